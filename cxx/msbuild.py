"""Generation of the MSBuild solution (``.slnx``) and project (``.vcxproj``) files."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple
import os
import tempfile
import uuid
import xml.etree.ElementTree as ET

from .config import Settings
from .errors import EXIT_FAILURE, EXIT_SUCCESS, GenerationError
from .paths import ProjectPaths


MSBUILD_NAMESPACE = "http://schemas.microsoft.com/developer/msbuild/2003"
PROJECT_GUID = "{4985344b-071c-4114-a0bb-41d2b55773cd}"
PLATFORM_TOOLSET = "v145"

CONFIGURATIONS: Tuple[str, ...] = ("Debug", "Release")
PLATFORMS: Tuple[str, ...] = ("Win32", "x64")
SOLUTION_PLATFORMS: Tuple[str, ...] = ("x64", "x86")

SOURCE_SUFFIX = ".cpp"
MODULE_SUFFIX = ".ixx"
HEADER_SUFFIX = ".h"

USER_PROPS = r"$(UserRootDir)\Microsoft.Cpp.$(Platform).user.props"


INHERITED_DEFINITIONS = "%(PreprocessorDefinitions)"

_PREPROCESSOR_DEFINITIONS = {
    ("Debug", "Win32"): f"WIN32;_DEBUG;_CONSOLE;{INHERITED_DEFINITIONS}",
    ("Release", "Win32"): f"WIN32;NDEBUG;_CONSOLE;{INHERITED_DEFINITIONS}",
    ("Debug", "x64"): f"_DEBUG;_CONSOLE;{INHERITED_DEFINITIONS}",
    ("Release", "x64"): f"NDEBUG;_CONSOLE;{INHERITED_DEFINITIONS}",
}


def preprocessor_definitions(configuration: str, platform: str) -> str:
    return _PREPROCESSOR_DEFINITIONS.get((configuration, platform), INHERITED_DEFINITIONS)


@dataclass(frozen=True, slots=True)
class CompileSettings:
    preprocessor_definitions: str
    warning_level: str = "Level4"
    treat_warnings_as_errors: bool = True
    sdl_check: bool = True
    conformance_mode: bool = True
    language_standard: str = "stdcpplatest"
    language_standard_c: str = "stdclatest"
    build_stl_modules: bool = True
    function_level_linking: bool = False
    intrinsic_functions: bool = False

    def metadata(self) -> List[Tuple[str, str]]:
        entries = [
            ("WarningLevel", self.warning_level),
            ("TreatWarningAsError", _flag(self.treat_warnings_as_errors)),
            ("SDLCheck", _flag(self.sdl_check)),
            ("ConformanceMode", _flag(self.conformance_mode)),
            ("LanguageStandard", self.language_standard),
            ("LanguageStandard_C", self.language_standard_c),
            ("BuildStlModules", _flag(self.build_stl_modules)),
            ("PreprocessorDefinitions", self.preprocessor_definitions),
        ]
        if self.function_level_linking:
            entries.append(("FunctionLevelLinking", "true"))
        if self.intrinsic_functions:
            entries.append(("IntrinsicFunctions", "true"))
        return entries


@dataclass(frozen=True, slots=True)
class LinkSettings:
    subsystem: str = "Console"
    generate_debug_information: bool = True

    def metadata(self) -> List[Tuple[str, str]]:
        return [
            ("SubSystem", self.subsystem),
            ("GenerateDebugInformation", _flag(self.generate_debug_information)),
        ]


@dataclass(frozen=True, slots=True)
class MatrixCell:
    configuration: str
    platform: str

    @property
    def name(self) -> str:
        return f"{self.configuration}|{self.platform}"

    @property
    def condition(self) -> str:
        return f"'$(Configuration)|$(Platform)'=='{self.name}'"

    @property
    def is_release(self) -> bool:
        return self.configuration == "Release"

    def compile_settings(self) -> CompileSettings:
        return CompileSettings(
            preprocessor_definitions=preprocessor_definitions(self.configuration, self.platform),
            function_level_linking=self.is_release,
            intrinsic_functions=self.is_release,
        )

    def link_settings(self) -> LinkSettings:
        return LinkSettings()


def configuration_matrix() -> List[MatrixCell]:
    return [MatrixCell(configuration, platform) for configuration in CONFIGURATIONS for platform in PLATFORMS]


@dataclass(frozen=True, slots=True)
class SourceFileSet:
    sources: Tuple[Path, ...] = ()
    modules: Tuple[Path, ...] = ()
    headers: Tuple[Path, ...] = ()

    def compile_items(self) -> Iterator[Path]:
        yield from self.sources
        yield from self.modules

    def __len__(self) -> int:
        return len(self.sources) + len(self.modules) + len(self.headers)


def scan_sources(src_dir: Path) -> SourceFileSet:
    """Collect the compilable files directly inside ``src_dir``."""

    buckets: dict[str, List[Path]] = {SOURCE_SUFFIX: [], MODULE_SUFFIX: [], HEADER_SUFFIX: []}
    for entry in src_dir.iterdir():
        if not entry.is_file():
            continue
        bucket = buckets.get(entry.suffix.lower())
        if bucket is not None:
            bucket.append(entry)
    return SourceFileSet(
        sources=tuple(sorted(buckets[SOURCE_SUFFIX])),
        modules=tuple(sorted(buckets[MODULE_SUFFIX])),
        headers=tuple(sorted(buckets[HEADER_SUFFIX])),
    )


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _relative(path: Path, base: Path) -> str:
    return os.path.relpath(path, base).replace("\\", "/")


@dataclass
class ProjectDocument:
    """Ordered builder over an MSBuild ``<Project>`` element."""

    root: ET.Element = field(
        default_factory=lambda: ET.Element("Project", {"DefaultTargets": "Build", "xmlns": MSBUILD_NAMESPACE})
    )

    @staticmethod
    def _attributes(label: str | None, condition: str | None) -> dict[str, str]:
        attributes: dict[str, str] = {}
        if condition:
            attributes["Condition"] = condition
        if label:
            attributes["Label"] = label
        return attributes

    def property_group(self, label: str | None = None, condition: str | None = None) -> ET.Element:
        return ET.SubElement(self.root, "PropertyGroup", self._attributes(label, condition))

    def item_group(self, label: str | None = None) -> ET.Element:
        return ET.SubElement(self.root, "ItemGroup", self._attributes(label, None))

    def item_definition_group(self, condition: str) -> ET.Element:
        return ET.SubElement(self.root, "ItemDefinitionGroup", self._attributes(None, condition))

    def import_group(self, label: str, condition: str | None = None) -> ET.Element:
        return ET.SubElement(self.root, "ImportGroup", self._attributes(label, condition))

    def add_import(
        self,
        project: str,
        *,
        parent: ET.Element | None = None,
        condition: str | None = None,
        label: str | None = None,
    ) -> ET.Element:
        attributes = {"Project": project}
        attributes.update(self._attributes(label, condition))
        return ET.SubElement(self.root if parent is None else parent, "Import", attributes)

    @staticmethod
    def add_properties(group: ET.Element, properties: Iterable[Tuple[str, str]]) -> None:
        for name, value in properties:
            ET.SubElement(group, name).text = value


def build_project(paths: ProjectPaths, sources: SourceFileSet) -> ET.Element:
    """Build the ``.vcxproj`` tree.

    Block order matters to MSBuild: configuration property groups precede the
    ProjectConfigurations list, and ``Microsoft.Cpp.targets`` is imported after
    every setting it consumes.
    """

    document = ProjectDocument()
    matrix = configuration_matrix()

    globals_group = document.property_group(label="Globals")
    document.add_properties(
        globals_group,
        [
            ("VCProjectVersion", "18.0"),
            ("Keyword", "Win32Proj"),
            ("ProjectGuid", PROJECT_GUID),
            ("RootNamespace", paths.project_name),
            ("WindowsTargetPlatformVersion", "10.0"),
            ("UseMultiToolTask", "true"),
            ("EnforceProcessCountAcrossBuilds", "true"),
        ],
    )

    document.add_import(r"$(VCTargetsPath)\Microsoft.Cpp.Default.props")

    for cell in matrix:
        folder = cell.configuration.lower()
        group = document.property_group(label="Configuration", condition=cell.condition)
        document.add_properties(
            group,
            [
                ("ConfigurationType", "Application"),
                ("UseDebugLibraries", _flag(not cell.is_release)),
                ("PlatformToolset", PLATFORM_TOOLSET),
                ("CharacterSet", "Unicode"),
                ("EnableUnitySupport", "false"),
                ("IntDir", f"$(SolutionDir)\\{folder}\\obj\\"),
                ("OutDir", f"$(SolutionDir)\\{folder}\\"),
            ],
        )

    configurations = document.item_group(label="ProjectConfigurations")
    for cell in matrix:
        item = ET.SubElement(configurations, "ProjectConfiguration", {"Include": cell.name})
        document.add_properties(item, [("Configuration", cell.configuration), ("Platform", cell.platform)])

    document.add_import(r"$(VCTargetsPath)\Microsoft.Cpp.props")

    document.import_group("ExtensionSettings")
    document.import_group("Shared")

    for cell in matrix:
        sheets = document.import_group("PropertySheets", condition=cell.condition)
        document.add_import(
            USER_PROPS,
            parent=sheets,
            condition=f"exists('{USER_PROPS}')",
            label="LocalAppDataPlatform",
        )

    document.property_group(label="UserMacros")

    for cell in matrix:
        definitions = document.item_definition_group(cell.condition)
        document.add_properties(ET.SubElement(definitions, "ClCompile"), cell.compile_settings().metadata())
        document.add_properties(ET.SubElement(definitions, "Link"), cell.link_settings().metadata())

    document.item_group()

    document.add_import(r"$(VCTargetsPath)\Microsoft.Cpp.targets")

    document.import_group("ExtensionTargets")

    vcpkg = document.property_group(label="Vcpkg")
    document.add_properties(
        vcpkg,
        [
            ("VcpkgEnableManifest", "true"),
            ("VcpkgUseStatic", "true"),
            ("VcpkgUseMD", "true"),
        ],
    )

    files = document.item_group()
    for path in sources.compile_items():
        ET.SubElement(files, "ClCompile", {"Include": _relative(path, paths.build)})
    for path in sources.headers:
        ET.SubElement(files, "ClInclude", {"Include": _relative(path, paths.build)})

    return document.root


def build_solution(project_file: str, project_id: str, platforms: Sequence[str] = SOLUTION_PLATFORMS) -> ET.Element:
    solution = ET.Element("Solution")
    configurations = ET.SubElement(solution, "Configurations")
    for platform in platforms:
        ET.SubElement(configurations, "Platform", {"Name": platform})
    ET.SubElement(solution, "Project", {"Path": project_file, "Id": project_id})
    return solution


def project_identifier(paths: ProjectPaths, *, stable: bool = False) -> str:
    if stable:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, paths.root.as_uri()))
    return str(uuid.uuid4())


def render(element: ET.Element, *, declaration: bool = True) -> bytes:
    tree = ET.ElementTree(element)
    ET.indent(tree, space="  ")
    body = ET.tostring(element, encoding="unicode", short_empty_elements=True)
    header = '<?xml version="1.0" encoding="utf-8"?>\n' if declaration else ""
    return f"{header}{body}\n".encode("utf-8")


def write_document(element: ET.Element, path: Path, *, declaration: bool = True) -> None:
    """Write ``element`` to ``path``, replacing any previous file in one step."""

    payload = render(element, declaration=declaration)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def generate_descriptors(paths: ProjectPaths, settings: Settings | None = None) -> SourceFileSet:
    """Regenerate both descriptors; raises :class:`GenerationError` on I/O failure."""

    settings = settings or Settings()
    try:
        sources = scan_sources(paths.src)
    except OSError as exc:
        raise GenerationError(f"Cannot read sources directory '{paths.src}': {exc}") from exc

    project_id = project_identifier(paths, stable=settings.stable_project_id)
    try:
        write_document(build_solution(paths.project_file.name, project_id), paths.solution_file, declaration=False)
        write_document(build_project(paths, sources), paths.project_file)
    except OSError as exc:
        raise GenerationError(f"Cannot write build descriptors: {exc}") from exc
    return sources


def generate(paths: ProjectPaths, settings: Settings | None = None, console=None) -> int:
    try:
        sources = generate_descriptors(paths, settings)
    except GenerationError as exc:
        if console is not None:
            console.error(str(exc))
        return EXIT_FAILURE
    if console is not None:
        console.info(f"Generated {paths.solution_file.name} and {paths.project_file.name} ({len(sources)} files)")
    return EXIT_SUCCESS


__all__ = [
    "CONFIGURATIONS",
    "PLATFORMS",
    "PROJECT_GUID",
    "CompileSettings",
    "LinkSettings",
    "MatrixCell",
    "ProjectDocument",
    "SourceFileSet",
    "build_project",
    "build_solution",
    "configuration_matrix",
    "generate",
    "generate_descriptors",
    "preprocessor_definitions",
    "project_identifier",
    "render",
    "scan_sources",
    "write_document",
]

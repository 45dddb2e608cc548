from __future__ import annotations

from pathlib import Path
import tempfile
import unittest
import uuid
import xml.etree.ElementTree as ET

from cxx.config import Settings
from cxx.errors import GenerationError
from cxx.msbuild import (
    MSBUILD_NAMESPACE,
    PROJECT_GUID,
    build_project,
    build_solution,
    configuration_matrix,
    generate_descriptors,
    preprocessor_definitions,
    project_identifier,
    render,
    scan_sources,
)
from cxx.paths import ProjectPaths


NS = f"{{{MSBUILD_NAMESPACE}}}"


def _tag(element: ET.Element) -> str:
    return element.tag.replace(NS, "")


class PreprocessorDefinitionTests(unittest.TestCase):
    def test_table(self) -> None:
        self.assertEqual(
            preprocessor_definitions("Debug", "Win32"),
            "WIN32;_DEBUG;_CONSOLE;%(PreprocessorDefinitions)",
        )
        self.assertEqual(
            preprocessor_definitions("Release", "Win32"),
            "WIN32;NDEBUG;_CONSOLE;%(PreprocessorDefinitions)",
        )
        self.assertEqual(preprocessor_definitions("Debug", "x64"), "_DEBUG;_CONSOLE;%(PreprocessorDefinitions)")
        self.assertEqual(preprocessor_definitions("Release", "x64"), "NDEBUG;_CONSOLE;%(PreprocessorDefinitions)")

    def test_unknown_cell_keeps_inherited_definitions(self) -> None:
        self.assertEqual(preprocessor_definitions("Profile", "ARM64"), "%(PreprocessorDefinitions)")

    def test_matrix_order(self) -> None:
        self.assertEqual(
            [cell.name for cell in configuration_matrix()],
            ["Debug|Win32", "Debug|x64", "Release|Win32", "Release|x64"],
        )


class ProjectDocumentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        (self.root / "cxx.jsonc").write_text('{"name": "demo", "version": "0.0.0"}')
        src = self.root / "src"
        (src / "nested").mkdir(parents=True)
        for name in ("main.cpp", "util.cpp", "math.ixx", "util.h", "notes.txt", "nested/skip.cpp"):
            (src / name).write_text("")
        self.paths = ProjectPaths.from_root(self.root)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _project(self) -> ET.Element:
        xml = render(build_project(self.paths, scan_sources(self.paths.src))).decode("utf-8")
        return ET.fromstring(xml)

    def test_scan_is_flat_and_sorted(self) -> None:
        sources = scan_sources(self.paths.src)
        self.assertEqual([path.name for path in sources.sources], ["main.cpp", "util.cpp"])
        self.assertEqual([path.name for path in sources.modules], ["math.ixx"])
        self.assertEqual([path.name for path in sources.headers], ["util.h"])
        self.assertEqual(len(sources), 4)

    def test_block_order(self) -> None:
        root = self._project()
        self.assertEqual(root.get("DefaultTargets"), "Build")
        blocks = [(_tag(child), child.get("Label")) for child in root]
        self.assertEqual(
            blocks,
            [
                ("PropertyGroup", "Globals"),
                ("Import", None),
                ("PropertyGroup", "Configuration"),
                ("PropertyGroup", "Configuration"),
                ("PropertyGroup", "Configuration"),
                ("PropertyGroup", "Configuration"),
                ("ItemGroup", "ProjectConfigurations"),
                ("Import", None),
                ("ImportGroup", "ExtensionSettings"),
                ("ImportGroup", "Shared"),
                ("ImportGroup", "PropertySheets"),
                ("ImportGroup", "PropertySheets"),
                ("ImportGroup", "PropertySheets"),
                ("ImportGroup", "PropertySheets"),
                ("PropertyGroup", "UserMacros"),
                ("ItemDefinitionGroup", None),
                ("ItemDefinitionGroup", None),
                ("ItemDefinitionGroup", None),
                ("ItemDefinitionGroup", None),
                ("ItemGroup", None),
                ("Import", None),
                ("ImportGroup", "ExtensionTargets"),
                ("PropertyGroup", "Vcpkg"),
                ("ItemGroup", None),
            ],
        )

    def test_globals(self) -> None:
        globals_group = self._project().find(f"{NS}PropertyGroup[@Label='Globals']")
        self.assertEqual(globals_group.findtext(f"{NS}ProjectGuid"), PROJECT_GUID)
        self.assertEqual(globals_group.findtext(f"{NS}RootNamespace"), "app")
        self.assertEqual(globals_group.findtext(f"{NS}Keyword"), "Win32Proj")

    def test_configuration_groups_cover_matrix(self) -> None:
        groups = self._project().findall(f"{NS}PropertyGroup[@Label='Configuration']")
        self.assertEqual(len(groups), 4)
        conditions = [group.get("Condition") for group in groups]
        self.assertIn("'$(Configuration)|$(Platform)'=='Release|x64'", conditions)
        release = groups[3]
        self.assertEqual(release.findtext(f"{NS}UseDebugLibraries"), "false")
        self.assertEqual(release.findtext(f"{NS}OutDir"), "$(SolutionDir)\\release\\")
        self.assertEqual(release.findtext(f"{NS}IntDir"), "$(SolutionDir)\\release\\obj\\")
        self.assertEqual(groups[0].findtext(f"{NS}UseDebugLibraries"), "true")

    def test_item_definition_groups(self) -> None:
        groups = self._project().findall(f"{NS}ItemDefinitionGroup")
        self.assertEqual(len(groups), 4)
        debug_win32, _, release_win32, release_x64 = groups

        debug_compile = debug_win32.find(f"{NS}ClCompile")
        self.assertEqual(debug_compile.findtext(f"{NS}WarningLevel"), "Level4")
        self.assertEqual(debug_compile.findtext(f"{NS}LanguageStandard"), "stdcpplatest")
        self.assertEqual(
            debug_compile.findtext(f"{NS}PreprocessorDefinitions"),
            "WIN32;_DEBUG;_CONSOLE;%(PreprocessorDefinitions)",
        )
        self.assertIsNone(debug_compile.find(f"{NS}FunctionLevelLinking"))

        release_compile = release_x64.find(f"{NS}ClCompile")
        self.assertEqual(release_compile.findtext(f"{NS}FunctionLevelLinking"), "true")
        self.assertEqual(release_compile.findtext(f"{NS}IntrinsicFunctions"), "true")
        self.assertEqual(
            release_win32.find(f"{NS}ClCompile").findtext(f"{NS}PreprocessorDefinitions"),
            "WIN32;NDEBUG;_CONSOLE;%(PreprocessorDefinitions)",
        )
        self.assertEqual(release_x64.find(f"{NS}Link").findtext(f"{NS}SubSystem"), "Console")

    def test_file_items_are_relative_to_build_directory(self) -> None:
        files = list(self._project())[-1]
        items = [(_tag(item), item.get("Include")) for item in files]
        self.assertEqual(
            items,
            [
                ("ClCompile", "../src/main.cpp"),
                ("ClCompile", "../src/util.cpp"),
                ("ClCompile", "../src/math.ixx"),
                ("ClInclude", "../src/util.h"),
            ],
        )

    def test_output_is_deterministic(self) -> None:
        sources = scan_sources(self.paths.src)
        first = render(build_project(self.paths, sources))
        second = render(build_project(self.paths, scan_sources(self.paths.src)))
        self.assertEqual(first, second)
        self.assertTrue(first.startswith(b'<?xml version="1.0" encoding="utf-8"?>'))


class SolutionTests(unittest.TestCase):
    def test_single_project_entry(self) -> None:
        solution = ET.fromstring(render(build_solution("app.vcxproj", "1234"), declaration=False))
        self.assertEqual(solution.tag, "Solution")
        projects = solution.findall("Project")
        self.assertEqual(len(projects), 1)
        self.assertEqual(projects[0].get("Path"), "app.vcxproj")
        self.assertEqual(projects[0].get("Id"), "1234")
        self.assertEqual([p.get("Name") for p in solution.iter("Platform")], ["x64", "x86"])

    def test_identifier_modes(self) -> None:
        paths = ProjectPaths.from_root(Path(tempfile.gettempdir()).resolve() / "demo")
        stable = project_identifier(paths, stable=True)
        self.assertEqual(stable, project_identifier(paths, stable=True))
        uuid.UUID(project_identifier(paths))


class GenerateDescriptorsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        (self.root / "src").mkdir()
        (self.root / "src" / "app.cpp").write_text("")
        self.paths = ProjectPaths.from_root(self.root)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_writes_both_files_and_replaces_previous(self) -> None:
        self.paths.build.mkdir()
        self.paths.project_file.write_text("stale")

        sources = generate_descriptors(self.paths, Settings(stable_project_id=True))

        self.assertEqual(len(sources), 1)
        self.assertTrue(self.paths.solution_file.read_text().startswith("<Solution>"))
        project = self.paths.project_file.read_text()
        self.assertIn("../src/app.cpp", project)
        self.assertNotIn("stale", project)
        self.assertEqual(sorted(p.name for p in self.paths.build.iterdir()), ["app.slnx", "app.vcxproj"])

    def test_missing_sources_directory_raises(self) -> None:
        paths = ProjectPaths.from_root(self.root / "elsewhere")
        with self.assertRaises(GenerationError):
            generate_descriptors(paths)


if __name__ == "__main__":
    unittest.main()

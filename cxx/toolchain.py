"""Visual Studio installation discovery and tool path resolution."""
from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Protocol
import json
import os
import shutil

from core.command_runner import CommandRunner

from .errors import ToolNotFound


@dataclass(frozen=True, slots=True)
class Installation:
    install_path: Path
    version: str
    display_name: str | None = None
    instance_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Installation":
        if not isinstance(data, Mapping):
            raise TypeError("Installation entry must be a mapping")
        path = data.get("installationPath")
        version = data.get("installationVersion")
        if not isinstance(path, str) or not path:
            raise ValueError("Installation entry is missing 'installationPath'")
        if not isinstance(version, str) or not version:
            raise ValueError(f"Installation '{path}' is missing 'installationVersion'")
        display_name = data.get("displayName")
        instance_id = data.get("instanceId")
        return cls(
            install_path=Path(path),
            version=version,
            display_name=str(display_name) if display_name is not None else None,
            instance_id=str(instance_id) if instance_id is not None else None,
        )


class InstallationEnumerator(Protocol):
    def next(self) -> Installation | None:
        """Return the next installation, or ``None`` once exhausted."""


class StaticEnumerator:
    """Enumerates a fixed sequence of installations."""

    def __init__(self, installations: Iterable[Installation]) -> None:
        self._iterator: Iterator[Installation] = iter(list(installations))

    def next(self) -> Installation | None:
        return next(self._iterator, None)


class VSWhereEnumerator:
    """Enumerates installations reported by ``vswhere.exe``.

    The query process is started on the first call to :meth:`next` and its
    output is consumed exactly once.
    """

    QUERY = ("-all", "-prerelease", "-products", "*", "-format", "json", "-utf8")

    def __init__(self, runner: CommandRunner, vswhere: Path | None) -> None:
        self._runner = runner
        self._vswhere = vswhere
        self._pending: Iterator[Installation] | None = None

    def _query(self) -> Iterator[Installation]:
        if self._vswhere is None or not self._vswhere.is_file():
            return iter(())
        result = self._runner.run([str(self._vswhere), *self.QUERY], check=False, note="vswhere")
        if result.returncode != 0 or not result.stdout.strip():
            return iter(())
        try:
            entries = json.loads(result.stdout)
        except json.JSONDecodeError:
            return iter(())
        installations = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                installations.append(Installation.from_mapping(entry))
            except (TypeError, ValueError):
                continue
        return iter(installations)

    def next(self) -> Installation | None:
        if self._pending is None:
            self._pending = self._query()
        return next(self._pending, None)


def latest_installation(enumerator: InstallationEnumerator) -> Installation | None:
    """Drain ``enumerator`` once, keeping the greatest version string.

    Versions compare as plain strings, so ``"18.0-beta"`` beats ``"17.9"``.
    On ties the first installation seen wins.
    """

    latest: Installation | None = None
    while True:
        candidate = enumerator.next()
        if candidate is None:
            return latest
        if latest is None or candidate.version > latest.version:
            latest = candidate


def _newest_child(directory: Path) -> Path | None:
    if not directory.is_dir():
        return None
    children = [child for child in directory.iterdir() if child.is_dir()]
    if not children:
        return None
    return max(children, key=lambda child: child.name)


def _existing(path: Path) -> Path | None:
    return path if path.is_file() else None


def default_vswhere_path(env: Mapping[str, str] | None = None) -> Path | None:
    environ = os.environ if env is None else env
    program_files = environ.get("ProgramFiles(x86)") or environ.get("ProgramFiles")
    if not program_files:
        return None
    return Path(program_files) / "Microsoft Visual Studio" / "Installer" / "vswhere.exe"


class Toolchain:
    """Tool paths derived from the newest Visual Studio installation.

    Every accessor returns ``None`` when the tool is missing; :meth:`require`
    turns that into :class:`~cxx.errors.ToolNotFound` at the point of use.
    """

    TOOLS: Dict[str, str] = {
        "vswhere": "vswhere",
        "msbuild": "msbuild",
        "cl": "cl",
        "link": "link",
        "lib": "lib",
        "rc": "rc",
        "ninja": "ninja",
        "vcpkg": "vcpkg",
        "clang-format": "clang_format",
        "dev-prompt": "dev_prompt",
    }

    def __init__(
        self,
        installation: Installation | None = None,
        *,
        enumerator: InstallationEnumerator | None = None,
        env: Mapping[str, str] | None = None,
        search_path: str | None = None,
        formatter: str = "clang-format",
    ) -> None:
        self._installation = installation
        self._enumerator = enumerator
        self._env = dict(os.environ if env is None else env)
        self._search_path = search_path
        self._formatter = formatter

    @classmethod
    def locate(
        cls,
        runner: CommandRunner,
        *,
        env: Mapping[str, str] | None = None,
        formatter: str = "clang-format",
    ) -> "Toolchain":
        environ = os.environ if env is None else env
        enumerator = VSWhereEnumerator(runner, default_vswhere_path(environ))
        return cls(enumerator=enumerator, env=environ, formatter=formatter)

    def with_search_path(self, search_path: str | None) -> "Toolchain":
        """Return a copy whose PATH lookups use ``search_path`` (e.g. the dev environment PATH)."""
        return Toolchain(
            self.installation,
            env=self._env,
            search_path=search_path,
            formatter=self._formatter,
        )

    @cached_property
    def installation(self) -> Installation | None:
        if self._installation is not None:
            return self._installation
        if self._enumerator is None:
            return None
        return latest_installation(self._enumerator)

    @property
    def install_path(self) -> Path | None:
        installation = self.installation
        return installation.install_path if installation else None

    def _which(self, name: str) -> Path | None:
        search = self._search_path if self._search_path is not None else self._env.get("PATH")
        found = shutil.which(name, path=search)
        return Path(found) if found else None

    @property
    def vswhere(self) -> Path | None:
        path = default_vswhere_path(self._env)
        return _existing(path) if path else None

    @property
    def msbuild(self) -> Path | None:
        root = self.install_path
        if root is None:
            return None
        return _existing(root / "MSBuild" / "Current" / "Bin" / "amd64" / "MSBuild.exe")

    @property
    def msvc_root(self) -> Path | None:
        root = self.install_path
        if root is None:
            return None
        return _newest_child(root / "VC" / "Tools" / "MSVC")

    def _msvc_tool(self, name: str) -> Path | None:
        msvc = self.msvc_root
        if msvc is None:
            return None
        return _existing(msvc / "bin" / "Hostx64" / "x64" / name)

    @property
    def cl(self) -> Path | None:
        return self._msvc_tool("cl.exe")

    @property
    def link(self) -> Path | None:
        return self._msvc_tool("link.exe")

    @property
    def lib(self) -> Path | None:
        return self._msvc_tool("lib.exe")

    @property
    def rc(self) -> Path | None:
        # rc.exe ships with the Windows SDK, which only the dev environment PATH exposes.
        return self._which("rc")

    @property
    def ninja(self) -> Path | None:
        root = self.install_path
        if root is None:
            return None
        return _existing(
            root / "Common7" / "IDE" / "CommonExtensions" / "Microsoft" / "CMake" / "Ninja" / "ninja.exe"
        )

    @property
    def vcpkg(self) -> Path | None:
        root = self.install_path
        if root is not None:
            bundled = _existing(root / "VC" / "vcpkg" / "vcpkg.exe")
            if bundled is not None:
                return bundled
        vcpkg_root = self._env.get("VCPKG_ROOT")
        if vcpkg_root:
            rooted = _existing(Path(vcpkg_root) / "vcpkg.exe")
            if rooted is not None:
                return rooted
        return self._which("vcpkg")

    @property
    def clang_format(self) -> Path | None:
        return self._which(self._formatter)

    @property
    def dev_prompt(self) -> Path | None:
        root = self.install_path
        if root is None:
            return None
        return _existing(root / "Common7" / "Tools" / "VsDevCmd.bat")

    def path_of(self, tool: str) -> Path | None:
        attribute = self.TOOLS.get(tool.lower())
        if attribute is None:
            raise KeyError(f"Unknown tool: {tool}")
        return getattr(self, attribute)

    def require(self, tool: str) -> Path:
        path = self.path_of(tool)
        if path is None:
            hint = None if self.installation else "no Visual Studio installation found"
            raise ToolNotFound(tool, hint)
        return path

    def inventory(self) -> Dict[str, Path | None]:
        listing: Dict[str, Path | None] = {"install": self.install_path}
        for name in self.TOOLS:
            listing[name] = self.path_of(name)
        return listing


__all__ = [
    "Installation",
    "InstallationEnumerator",
    "StaticEnumerator",
    "Toolchain",
    "VSWhereEnumerator",
    "default_vswhere_path",
    "latest_installation",
]

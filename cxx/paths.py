"""Project root discovery and canonical project paths."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os

from .config import Settings
from .errors import ManifestNotFound


def resolve_root(start: Path | None = None, manifest: str = "cxx.jsonc") -> Path:
    """Return the nearest directory at or above ``start`` containing ``manifest``."""

    origin = Path(start if start is not None else Path.cwd()).absolute()
    for candidate in (origin, *origin.parents):
        if (candidate / manifest).is_file():
            return candidate
    raise ManifestNotFound(manifest, origin)


def app_data_dir(env: Mapping[str, str] | None = None) -> Path:
    """Per-user directory for caches written by the tool."""

    environ = os.environ if env is None else env
    if os.name == "nt":
        local = environ.get("LOCALAPPDATA")
        if local:
            return Path(local) / "cxx"
    xdg = environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "cxx"


@dataclass(frozen=True, slots=True)
class ProjectPaths:
    root: Path
    manifest: Path
    src: Path
    build: Path
    solution_file: Path
    project_file: Path
    publish: Path
    project_name: str = "app"

    @classmethod
    def from_root(cls, root: Path, settings: Settings | None = None) -> "ProjectPaths":
        settings = settings or Settings()
        build = root / settings.build_dir
        name = settings.project_name
        return cls(
            root=root,
            manifest=root / settings.manifest,
            src=root / settings.sources_dir,
            build=build,
            solution_file=build / f"{name}.slnx",
            project_file=build / f"{name}.vcxproj",
            publish=build / "publish",
            project_name=name,
        )

    @classmethod
    def discover(cls, start: Path | None = None, *, settings: Settings | None = None) -> "ProjectPaths":
        settings = settings or Settings()
        return cls.from_root(resolve_root(start, settings.manifest), settings)

    def output_dir(self, configuration: str) -> Path:
        # BuildConfiguration members are str, so lower() sees "Debug"/"Release".
        return self.build / configuration.lower()

    def executable(self, configuration: str) -> Path:
        return self.output_dir(configuration) / f"{self.project_name}.exe"


__all__ = ["ProjectPaths", "app_data_dir", "resolve_root"]

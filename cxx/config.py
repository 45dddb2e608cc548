"""User settings for the cxx tool."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Tuple
import os

import yaml

from core.config_loader import find_config_file, load_config_file, normalize_string_list

from .errors import ConfigurationError


DEFAULT_FORMAT_EXTENSIONS: Tuple[str, ...] = (".c", ".cpp", ".cxx", ".h", ".hpp", ".hxx", ".ixx")


@dataclass(frozen=True, slots=True)
class Settings:
    manifest: str = "cxx.jsonc"
    sources_dir: str = "src"
    build_dir: str = "build"
    project_name: str = "app"
    jobs: int = 0
    stable_project_id: bool = False
    formatter: str = "clang-format"
    format_extensions: Tuple[str, ...] = DEFAULT_FORMAT_EXTENSIONS
    cache_file: Path | None = None
    source: Path | None = field(default=None, compare=False)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, source: Path | None = None) -> "Settings":
        allowed_keys = {
            "manifest",
            "sources_dir",
            "build_dir",
            "project_name",
            "jobs",
            "stable_project_id",
            "formatter",
            "format_extensions",
            "cache_file",
        }
        unknown = {str(key) for key in data.keys() if str(key) not in allowed_keys}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigurationError(f"Configuration contains unknown keys: {joined}")

        values: dict[str, Any] = {}
        for key in ("manifest", "sources_dir", "build_dir", "project_name", "formatter"):
            raw = data.get(key)
            if raw is None:
                continue
            if not isinstance(raw, str) or not raw.strip():
                raise ConfigurationError(f"'{key}' must be a non-empty string")
            values[key] = raw.strip()

        jobs = data.get("jobs")
        if jobs is not None:
            if isinstance(jobs, bool) or not isinstance(jobs, int) or jobs < 0:
                raise ConfigurationError("'jobs' must be a non-negative integer")
            values["jobs"] = jobs

        stable = data.get("stable_project_id")
        if stable is not None:
            if not isinstance(stable, bool):
                raise ConfigurationError("'stable_project_id' must be a boolean")
            values["stable_project_id"] = stable

        if "format_extensions" in data:
            try:
                extensions = normalize_string_list(data["format_extensions"], field_name="format_extensions")
            except TypeError as exc:
                raise ConfigurationError(str(exc)) from exc
            values["format_extensions"] = tuple(
                ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions
            )

        cache_file = data.get("cache_file")
        if cache_file is not None:
            if not isinstance(cache_file, str) or not cache_file.strip():
                raise ConfigurationError("'cache_file' must be a non-empty string")
            values["cache_file"] = Path(cache_file).expanduser()

        return cls(source=source, **values)

    def with_overrides(self, **overrides: Any) -> "Settings":
        applied = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **applied) if applied else self


def config_home(env: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if env is None else env
    if os.name == "nt":
        appdata = environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "cxx"
    xdg = environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "cxx"


def locate_settings_file(env: Mapping[str, str] | None = None) -> Path | None:
    """Return the settings file to load: ``$CXX_CONFIG`` first, then the config home."""

    environ = os.environ if env is None else env
    explicit = environ.get("CXX_CONFIG")
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"CXX_CONFIG points to a missing file: {path}")
        return path
    directory = config_home(environ)
    if not directory.is_dir():
        return None
    return find_config_file(directory, "config")


def load_settings(path: Path | None = None, *, env: Mapping[str, str] | None = None) -> Settings:
    config_path = path if path is not None else locate_settings_file(env)
    if config_path is None:
        return Settings()
    try:
        data = load_config_file(config_path)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to load configuration '{config_path}': {exc}") from exc
    return Settings.from_mapping(data, source=config_path)


__all__ = ["DEFAULT_FORMAT_EXTENSIONS", "Settings", "config_home", "load_settings", "locate_settings_file"]

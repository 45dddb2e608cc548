"""Build orchestration on top of the generated MSBuild descriptors."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Sequence
import json
import re
import shutil

from .context import Context
from .errors import EXIT_FAILURE, EXIT_NOT_FOUND, EXIT_SUCCESS
from .msbuild import generate as generate_descriptors


BUILD_PLATFORM = "x64"


class BuildConfiguration(str, Enum):
    DEBUG = "Debug"
    RELEASE = "Release"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: "str | BuildConfiguration | None") -> "BuildConfiguration":
        if value is None:
            return cls.DEBUG
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        choices = ", ".join(member.value.lower() for member in cls)
        raise ValueError(f"Unknown build configuration '{value}' (expected one of: {choices})")


def _manifest_name(manifest: Path, fallback: str) -> str:
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return fallback
    name = data.get("name") if isinstance(data, dict) else None
    if not isinstance(name, str) or not name.strip():
        return fallback
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "_", name.strip())
    return cleaned or fallback


class Builder:
    def __init__(self, context: Context) -> None:
        self._context = context
        self._console = context.console
        self._runner = context.runner
        self._toolchain = context.toolchain
        self._paths = context.project

    def generate(self) -> int:
        return generate_descriptors(self._paths, self._context.settings, self._console)

    def build_command(self, msbuild: Path | str, configuration: BuildConfiguration) -> List[str]:
        return [
            str(msbuild),
            "-nologo",
            "-v:minimal",
            f"/p:Configuration={configuration.value}",
            f"/p:Platform={BUILD_PLATFORM}",
        ]

    def build(self, configuration: BuildConfiguration | str | None = None) -> int:
        configuration = BuildConfiguration.parse(configuration)
        if self._console.dry_run:
            self._console.dry(f"generate {self._paths.solution_file} and {self._paths.project_file}")
        else:
            self._paths.build.mkdir(parents=True, exist_ok=True)
            exit_code = self.generate()
            if exit_code != EXIT_SUCCESS:
                return exit_code

        msbuild = self._toolchain.require("msbuild")
        self._console.info(f"Building {self._paths.project_name} ({configuration.value}|{BUILD_PLATFORM})")
        result = self._runner.run(
            self.build_command(msbuild, configuration),
            cwd=self._paths.build,
            check=False,
            note="build",
            stream=True,
        )
        if result.returncode != EXIT_SUCCESS:
            self._console.error(f"MSBuild exited with code {result.returncode}")
        return result.returncode

    def run(self, configuration: BuildConfiguration | str | None = None, arguments: Sequence[str] = ()) -> int:
        configuration = BuildConfiguration.parse(configuration)
        exit_code = self.build(configuration)
        if exit_code != EXIT_SUCCESS:
            return exit_code

        executable = self._paths.executable(configuration)
        if not self._console.dry_run and not executable.is_file():
            self._console.error(f"Executable not found: {executable}")
            return EXIT_NOT_FOUND
        result = self._runner.run(
            [str(executable), *arguments],
            cwd=self._paths.root,
            check=False,
            note="run",
            stream=True,
        )
        return result.returncode

    def clean(self) -> int:
        paths = self._paths
        if not paths.build.is_dir():
            self._console.error(f"Build directory not found: {paths.build}")
            return EXIT_NOT_FOUND

        for configuration in BuildConfiguration:
            output = paths.output_dir(configuration)
            if output.is_dir():
                self._console.debug(f"Removing {output}")
                shutil.rmtree(output)

        for descriptor in (paths.solution_file, paths.project_file):
            if descriptor.is_file():
                self._console.debug(f"Removing {descriptor}")
                descriptor.unlink()

        self._console.info("Clean complete")
        return EXIT_SUCCESS

    def publish(self) -> int:
        paths = self._paths
        exit_code = self.build(BuildConfiguration.RELEASE)
        if exit_code != EXIT_SUCCESS:
            return exit_code

        source = paths.executable(BuildConfiguration.RELEASE)
        destination = paths.publish / f"{_manifest_name(paths.manifest, paths.project_name)}.exe"
        if self._console.dry_run:
            self._console.dry(f"copy {source} -> {destination}")
            return EXIT_SUCCESS
        if not source.is_file():
            self._console.error(f"Release executable not found: {source}")
            return EXIT_FAILURE

        paths.publish.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            destination.unlink()
        shutil.copy2(source, destination)
        self._console.success(f"Published {destination}")
        return EXIT_SUCCESS


__all__ = ["BUILD_PLATFORM", "BuildConfiguration", "Builder"]

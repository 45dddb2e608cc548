"""Project scaffolding and vcpkg dependency installation."""
from __future__ import annotations

from pathlib import Path
from typing import Dict
import json
import textwrap

from core.command_runner import CommandRunner

from .config import Settings
from .errors import EXIT_FAILURE, EXIT_SUCCESS
from .toolchain import Toolchain


VCPKG_TRIPLET = "x64-windows-static-md"

APP_SOURCE = textwrap.dedent(
    """\
    #include <print>

    auto wmain() -> int {
        std::println("Hello, World!");

        return 0;
    }
    """
)


def vcpkg_environment() -> Dict[str, str]:
    return {
        "VCPKG_DEFAULT_TRIPLET": VCPKG_TRIPLET,
        "VCPKG_DEFAULT_HOST_TRIPLET": VCPKG_TRIPLET,
    }


def manifest_document(directory: Path) -> str:
    data = {"name": f"{directory.name or 'cxx'}-project", "version": "0.0.0"}
    return json.dumps(data, indent=2) + "\n"


def new_project(
    directory: Path,
    *,
    settings: Settings,
    runner: CommandRunner,
    toolchain: Toolchain,
    console,
) -> int:
    """Create a blank project in ``directory``, which must be empty."""

    if any(directory.iterdir()):
        console.error(f"Directory is not empty: {directory}")
        return EXIT_FAILURE

    manifest = directory / settings.manifest
    manifest.write_text(manifest_document(directory), encoding="utf-8")
    console.success(f"Created {manifest.name}")

    vcpkg = toolchain.vcpkg
    if vcpkg is None:
        console.info("vcpkg not found; skipping vcpkg manifest creation")
    else:
        result = runner.run(
            [str(vcpkg), "new", "--application"],
            cwd=directory,
            env=vcpkg_environment(),
            check=False,
            note="vcpkg",
            stream=True,
        )
        if result.returncode != EXIT_SUCCESS:
            console.error(f"vcpkg new exited with code {result.returncode}")

    sources = directory / settings.sources_dir
    sources.mkdir(parents=True, exist_ok=True)
    app = sources / "app.cpp"
    if not app.exists():
        app.write_text(APP_SOURCE, encoding="utf-8")
    console.success(f"Created {app.relative_to(directory)}")
    return EXIT_SUCCESS


def install_dependencies(root: Path, *, runner: CommandRunner, toolchain: Toolchain, console) -> int:
    vcpkg = toolchain.require("vcpkg")
    console.info("Installing vcpkg dependencies")
    result = runner.run(
        [str(vcpkg), "install"],
        cwd=root,
        env=vcpkg_environment(),
        check=False,
        note="vcpkg",
        stream=True,
    )
    return result.returncode


__all__ = ["APP_SOURCE", "VCPKG_TRIPLET", "install_dependencies", "manifest_document", "new_project", "vcpkg_environment"]

"""Capture and caching of the Visual Studio developer environment."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, MutableMapping, Tuple
import json
import os
import shutil
import tempfile

from core.command_runner import CommandRunner

from .errors import CaptureError, DevEnvironmentUnavailable
from .toolchain import Toolchain


DEV_PROMPT_ARGS = ("-arch=amd64", "-host_arch=amd64")


class DevEnvironment(MutableMapping[str, str]):
    """Environment variables with case-insensitive names.

    The spelling of the most recent assignment is kept for iteration.
    """

    def __init__(self, data: Mapping[str, str] | Iterable[Tuple[str, str]] | None = None) -> None:
        self._store: Dict[str, Tuple[str, str]] = {}
        if data is not None:
            self.update(data)

    def __getitem__(self, key: str) -> str:
        return self._store[key.upper()][1]

    def __setitem__(self, key: str, value: str) -> None:
        self._store[key.upper()] = (key, value)

    def __delitem__(self, key: str) -> None:
        del self._store[key.upper()]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"DevEnvironment({dict(self.items())!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Mapping):
            return NotImplemented
        if len(other) != len(self):
            return False
        return all(key in self and self[key] == value for key, value in other.items())

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items())

    def merged(self, base: Mapping[str, str] | None = None) -> Dict[str, str]:
        """Overlay this environment on ``base`` (default: the current process environment)."""
        combined = DevEnvironment(os.environ if base is None else base)
        combined.update(self)
        return combined.to_dict()

    def which(self, command: str) -> Path | None:
        """Locate ``command`` on this environment's PATH."""
        found = shutil.which(command, path=self.get("PATH", ""))
        return Path(found) if found else None


def parse_environment(text: str) -> DevEnvironment:
    """Parse ``NAME=VALUE`` lines as printed by ``set``."""

    env = DevEnvironment()
    for line in text.splitlines():
        name, separator, value = line.partition("=")
        if not separator or not name:
            continue
        env[name] = value
    return env


class EnvironmentCache:
    """JSON file mirroring the last captured developer environment."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> DevEnvironment | None:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or not data:
            return None
        if not all(isinstance(key, str) and isinstance(value, str) for key, value in data.items()):
            return None
        return DevEnvironment(data)

    def save(self, env: Mapping[str, str]) -> bool:
        """Write ``env`` to disk; returns ``False`` when the cache could not be written."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(dict(env.items()), handle, indent=2, ensure_ascii=False)
                    handle.write("\n")
                os.replace(temp_name, self.path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError:
            return False
        return True

    def clear(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True


def capture_command(script: Path) -> list[str]:
    """Command line that runs the dev prompt script and dumps the resulting environment.

    Each token is its own argument so only the script path gets quoted when the
    list is joined; cmd.exe does not treat ``\\"`` as an escaped quote.
    """
    return ["cmd.exe", "/d", "/c", "call", str(script), *DEV_PROMPT_ARGS, ">nul", "&&", "set"]


def capture_dev_environment(
    toolchain: Toolchain,
    *,
    runner: CommandRunner,
    cache: EnvironmentCache | None = None,
    refresh: bool = False,
    console=None,
) -> DevEnvironment:
    """Return the developer environment, capturing it only when the cache cannot serve it."""

    if cache is not None and not refresh:
        cached = cache.load()
        if cached is not None:
            if console is not None:
                console.debug(f"Using cached developer environment: {cache.path}")
            return cached

    script = toolchain.dev_prompt
    if script is None:
        raise DevEnvironmentUnavailable(
            "VsDevCmd.bat not found; install Visual Studio or the Build Tools with the C++ workload"
        )

    if console is not None:
        console.info(f"Capturing developer environment from {script}")
    try:
        result = runner.run(capture_command(script), check=False, note="devenv")
    except OSError as exc:
        raise CaptureError(f"Failed to start developer environment capture: {exc}") from exc

    if result.stderr.strip() and console is not None:
        console.error(result.stderr.strip())

    if result.returncode != 0:
        raise CaptureError(f"Developer environment script exited with code {result.returncode}")

    env = parse_environment(result.stdout)
    if not env:
        raise CaptureError("Developer environment script produced no variables")

    if cache is not None and not cache.save(env) and console is not None:
        console.debug(f"Could not write developer environment cache: {cache.path}")
    return env


__all__ = [
    "DEV_PROMPT_ARGS",
    "DevEnvironment",
    "EnvironmentCache",
    "capture_command",
    "capture_dev_environment",
    "parse_environment",
]

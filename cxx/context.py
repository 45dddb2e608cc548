"""
Console and run context shared by every cxx command.
"""
import sys
import threading
from dataclasses import dataclass
from typing import TextIO

from core.command_runner import CommandRunner

from .config import Settings
from .errors import ManifestNotFound
from .paths import ProjectPaths
from .toolchain import Toolchain


class Console:
    """Console output handler with a configurable log level.

    Levels: none < error < info < debug
    Default: 'info'

    Every write goes through a single lock so lines coming from concurrent
    workers never interleave.
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "info": 2,
        "debug": 3,
    }

    def __init__(
        self,
        level: str = "info",
        dry_run: bool = False,
        *,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        self.level_name = level
        self.level = self.LEVELS.get(level, self.LEVELS["info"])
        self.dry_run = dry_run
        self._stdout = stdout
        self._stderr = stderr
        self._lock = threading.Lock()

    def _write(self, message: str, *, error: bool = False) -> None:
        stream = (self._stderr or sys.stderr) if error else (self._stdout or sys.stdout)
        with self._lock:
            print(message, file=stream, flush=True)

    def out(self, message: str) -> None:
        """Plain program output, printed regardless of the log level."""
        self._write(message)

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._write(f"[INFO] {message}")

    def success(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self._write(f"[OK] {message}")

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self._write(f"[ERROR] {message}", error=True)

    def dry(self, message: str) -> None:
        if self.dry_run:
            self._write(f"[DRY] {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self._write(f"[DEBUG] {message}")


@dataclass(frozen=True)
class Context:
    settings: Settings
    console: Console
    runner: CommandRunner
    toolchain: Toolchain
    paths: ProjectPaths | None = None

    @property
    def project(self) -> ProjectPaths:
        if self.paths is None:
            raise ManifestNotFound(self.settings.manifest, "the current directory")
        return self.paths

"""Parallel clang-format over the project sources."""
from __future__ import annotations

from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Sequence
import os
import threading

import psutil

from core.command_runner import CommandRunner

from .config import DEFAULT_FORMAT_EXTENSIONS


@dataclass(slots=True)
class FormatResult:
    path: Path
    ok: bool
    message: str = ""
    cancelled: bool = False


def discover_sources(src_dir: Path, extensions: Iterable[str] = DEFAULT_FORMAT_EXTENSIONS) -> List[Path]:
    """Recursively list files under ``src_dir`` whose suffix is in ``extensions``."""

    allowed = {extension.lower() for extension in extensions}
    if not src_dir.is_dir():
        return []
    return sorted(path for path in src_dir.rglob("*") if path.is_file() and path.suffix.lower() in allowed)


def default_jobs() -> int:
    return psutil.cpu_count(logical=True) or os.cpu_count() or 1


class ParallelFormatter:
    """Runs one formatter process per file with at most ``jobs`` alive at once.

    A failing file is recorded as a :class:`FormatResult` and never stops the
    remaining files. :meth:`cancel` drops queued files and kills formatter
    processes that are already running.
    """

    def __init__(
        self,
        runner: CommandRunner,
        console,
        formatter: Path | str,
        *,
        jobs: int = 0,
    ) -> None:
        self._runner = runner
        self._console = console
        self._formatter = str(formatter)
        self._jobs = jobs if jobs > 0 else default_jobs()
        self._stop = threading.Event()
        self._futures: List[Future] = []

    @property
    def jobs(self) -> int:
        return self._jobs

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def cancel(self) -> None:
        self._stop.set()
        for future in self._futures:
            future.cancel()
        self._runner.terminate_all()

    def command(self, path: Path) -> List[str]:
        return [self._formatter, "-i", str(path)]

    def _format_file(self, path: Path) -> FormatResult:
        if self._stop.is_set():
            return FormatResult(path, ok=False, message="cancelled", cancelled=True)
        try:
            result = self._runner.run(self.command(path), check=False, note="format")
        except OSError as exc:
            return FormatResult(path, ok=False, message=str(exc))
        if self._stop.is_set():
            return FormatResult(path, ok=False, message="cancelled", cancelled=True)
        error = result.stderr.strip()
        if error:
            return FormatResult(path, ok=False, message=error)
        if result.returncode != 0:
            return FormatResult(path, ok=False, message=f"exit code {result.returncode}")
        return FormatResult(path, ok=True)

    def _report(self, result: FormatResult) -> None:
        if result.cancelled:
            return
        if result.ok:
            self._console.success(str(result.path))
        else:
            self._console.error(f"Error formatting {result.path}: {result.message}")

    def format_all(self, files: Sequence[Path]) -> List[FormatResult]:
        files = list(files)
        if not files:
            return []

        results: List[FormatResult] = []
        with ThreadPoolExecutor(max_workers=min(self._jobs, len(files))) as executor:
            futures: Dict[Future, Path] = {executor.submit(self._format_file, path): path for path in files}
            self._futures = list(futures)
            try:
                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        result = future.result()
                    except CancelledError:
                        result = FormatResult(path, ok=False, message="cancelled", cancelled=True)
                    except Exception as exc:
                        result = FormatResult(path, ok=False, message=str(exc))
                    self._report(result)
                    results.append(result)
            except KeyboardInterrupt:
                self.cancel()
                raise
            finally:
                self._futures = []

        order = {path: index for index, path in enumerate(files)}
        results.sort(key=lambda item: order[item.path])
        return results


def summarize(results: Sequence[FormatResult]) -> tuple[int, int, int]:
    """Return ``(formatted, failed, cancelled)`` counts."""

    formatted = sum(1 for result in results if result.ok)
    cancelled = sum(1 for result in results if result.cancelled)
    failed = len(results) - formatted - cancelled
    return formatted, failed, cancelled


__all__ = ["FormatResult", "ParallelFormatter", "default_jobs", "discover_sources", "summarize"]

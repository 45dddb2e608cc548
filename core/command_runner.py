"""Utilities for executing external tools with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess
import threading

import psutil


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, map(str, result.command)))}"
        if result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        else:
            message = (
                f"{message}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def terminate_all(self) -> int:
        """Kill every process this runner still has in flight.

        Returns the number of processes that were signalled.
        """
        return 0

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(str(part)) for part in command)


def _kill_tree(pid: int) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    for child in parent.children(recursive=True):
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue
    try:
        parent.kill()
    except psutil.NoSuchProcess:
        pass


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    Captured commands are read with :meth:`subprocess.Popen.communicate`, which
    drains stdout and stderr concurrently so neither pipe can fill up and stall
    the child. Every live process is tracked so :meth:`terminate_all` can kill
    in-flight work from another thread. Once :meth:`terminate_all` has run, any
    process started afterwards is killed as soon as it is registered.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: Dict[int, subprocess.Popen] = {}
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def _register(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._live[process.pid] = process
            terminated = self._terminated
        if terminated:
            _kill_tree(process.pid)

    def _release(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._live.pop(process.pid, None)

    def terminate_all(self) -> int:
        with self._lock:
            self._terminated = True
            processes = list(self._live.values())
        for process in processes:
            if process.poll() is None:
                _kill_tree(process.pid)
        return len(processes)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        args = [str(part) for part in command]
        pipe = None if stream else subprocess.PIPE
        process = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            stdout=pipe,
            stderr=pipe,
            text=not stream,
            errors=None if stream else "replace",
        )
        self._register(process)
        try:
            stdout, stderr = process.communicate()
        finally:
            self._release(process)

        return self._finalize(
            CommandResult(
                command=args,
                returncode=process.returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                streamed=stream,
            ),
            check=check,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    stream: bool


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    ``handler`` may supply the result for a recorded command; without one every
    command "succeeds" with empty output.
    """

    def __init__(self, handler: Callable[[RecordedCommand], CommandResult] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._handler = handler

    @staticmethod
    def _record_entry(
        *,
        command: Sequence[str],
        cwd: Path | None,
        env: Mapping[str, str] | None,
        note: str | None,
        stream: bool,
    ) -> RecordedCommand:
        return RecordedCommand(
            command=[str(part) for part in command],
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
            note=note,
            stream=stream,
        )

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        record = self._record_entry(command=command, cwd=cwd, env=env, note=note, stream=stream)
        self.commands.append(record)
        if self._handler is None:
            return CommandResult(command=record.command, returncode=0, stdout="", stderr="")
        result = self._handler(record)
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            note = record.note
            parts: List[str] = ["[dry-run]"]
            if note:
                parts.append(note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            yield " ".join(parts)

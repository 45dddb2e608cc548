"""Error taxonomy and process exit codes."""
from __future__ import annotations


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_NOT_FOUND = 2


class CxxError(RuntimeError):
    """Base class for failures surfaced to the command line as an exit code."""

    exit_code = EXIT_FAILURE


class ConfigurationError(CxxError):
    """Raised when a user configuration file is malformed."""


class ManifestNotFound(CxxError):
    exit_code = EXIT_NOT_FOUND

    def __init__(self, manifest: str, start: object) -> None:
        super().__init__(f"{manifest} not found in '{start}' or any parent directory")
        self.manifest = manifest


class ToolNotFound(CxxError):
    exit_code = EXIT_NOT_FOUND

    def __init__(self, tool: str, hint: str | None = None) -> None:
        message = f"Required tool not found: {tool}"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)
        self.tool = tool


class DevEnvironmentUnavailable(CxxError):
    """Raised when the developer command prompt script cannot be located."""

    exit_code = EXIT_NOT_FOUND


class CaptureError(CxxError):
    """Raised when the developer environment script produced nothing usable."""


class GenerationError(CxxError):
    """Raised when a build descriptor cannot be produced."""


__all__ = [
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "EXIT_NOT_FOUND",
    "CxxError",
    "ConfigurationError",
    "ManifestNotFound",
    "ToolNotFound",
    "DevEnvironmentUnavailable",
    "CaptureError",
    "GenerationError",
]

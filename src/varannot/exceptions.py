"""varannot exceptions."""

from __future__ import annotations


class VarAnnotError(Exception):
    """Base exception for varannot."""


class ConfigError(VarAnnotError):
    """Raised when configuration is missing or invalid."""


class InputGenerationError(VarAnnotError):
    """Raised when the annotation input file cannot be written."""

    def __init__(self, message: str, path: str | None = None, index: int | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.index = index


class ExternalProcessError(VarAnnotError):
    """Raised when the annotation engine exits non-zero or cannot be started."""

    def __init__(
        self,
        message: str,
        returncode: int | None = None,
        command: list[str] | None = None,
        stderr: str = "",
        stage: str = "annotate",
        cancelled: bool = False,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.command = command or []
        self.stderr = stderr
        self.stage = stage
        self.cancelled = cancelled


class ExternalProcessTimeout(ExternalProcessError):
    """Raised when the annotation engine outlives its timeout and is killed."""

    def __init__(
        self,
        message: str,
        timeout: float,
        command: list[str] | None = None,
        stderr: str = "",
        stage: str = "annotate",
    ) -> None:
        super().__init__(message, returncode=None, command=command, stderr=stderr, stage=stage)
        self.timeout = timeout


class OutputValidationError(VarAnnotError):
    """Raised when the engine output is missing or not a complete gzip stream."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class EstimationError(VarAnnotError):
    """Raised when the file to be sampled cannot be read."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class FailureKind(StrEnum):
    NOT_FOUND = "not_found"
    AUTH_REQUIRED = "auth_required"
    TIMED_OUT = "timed_out"
    EMPTY_OUTPUT = "empty_output"
    GENERIC_FAILURE = "generic_failure"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    prompt: str
    working_directory: Path | None = None
    timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise ValueError("Generation prompt must be non-empty.")


class GenerationError(RuntimeError):
    """Raised when a generator invocation fails."""

    kind: FailureKind = FailureKind.GENERIC_FAILURE

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        stdout: str | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class BackendNotFoundError(GenerationError):
    """Raised when the generator executable cannot be started."""

    kind = FailureKind.NOT_FOUND


class BackendAuthError(GenerationError):
    """Raised when the generator reports a missing or expired login."""

    kind = FailureKind.AUTH_REQUIRED


class BackendTimeoutError(GenerationError):
    """Raised when generator execution exceeds the request timeout."""

    kind = FailureKind.TIMED_OUT


class BackendEmptyOutputError(GenerationError):
    """Raised when the generator exits cleanly but prints nothing usable."""

    kind = FailureKind.EMPTY_OUTPUT


class BackendProcessError(GenerationError):
    """Raised when the generator process exits abnormally."""


class GeneratorBackend(ABC):
    @abstractmethod
    async def invoke(self, request: GenerationRequest) -> str:
        """Run one generation and return captured stdout verbatim."""

from refinery.backends.base import (
    BackendAuthError,
    BackendEmptyOutputError,
    BackendNotFoundError,
    BackendProcessError,
    BackendTimeoutError,
    FailureKind,
    GenerationError,
    GenerationRequest,
    GeneratorBackend,
)
from refinery.backends.codex import CodexBackend

__all__ = [
    "BackendAuthError",
    "BackendEmptyOutputError",
    "BackendNotFoundError",
    "BackendProcessError",
    "BackendTimeoutError",
    "CodexBackend",
    "FailureKind",
    "GenerationError",
    "GenerationRequest",
    "GeneratorBackend",
]

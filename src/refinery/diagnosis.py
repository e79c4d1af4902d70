from __future__ import annotations

from refinery.backends.base import FailureKind

NOT_FOUND_HINT = "Codex CLI not found. Make sure `codex` is installed and on PATH."
AUTH_HINT = "Codex CLI authentication required. Run `codex login` and try again."
TIMEOUT_HINT = "Codex timed out. Shorten the request or increase the timeout."
GENERIC_HINT = "Codex execution failed. Check server stderr for details."

# First match wins: an auth failure wrapped in a timeout message is still an auth failure.
DIAGNOSIS_RULES: tuple[tuple[tuple[str, ...], FailureKind, str], ...] = (
    (("enoent", "spawn codex"), FailureKind.NOT_FOUND, NOT_FOUND_HINT),
    (("login", "not logged in", "auth"), FailureKind.AUTH_REQUIRED, AUTH_HINT),
    (("timed out",), FailureKind.TIMED_OUT, TIMEOUT_HINT),
)


def _haystack(error: BaseException | None) -> str:
    if error is None:
        return ""
    stderr = getattr(error, "stderr", None) or ""
    return f"{error}\n{stderr}".lower()


def _match(error: BaseException | None) -> tuple[FailureKind, str]:
    haystack = _haystack(error)
    for needles, kind, hint in DIAGNOSIS_RULES:
        if any(needle in haystack for needle in needles):
            return kind, hint
    return FailureKind.GENERIC_FAILURE, GENERIC_HINT


def classify(error: BaseException | None) -> FailureKind:
    return _match(error)[0]


def diagnose(error: BaseException | None) -> str:
    """Return a short, non-technical hint describing why generation failed."""
    return _match(error)[1]

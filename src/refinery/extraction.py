from __future__ import annotations

import json
from enum import StrEnum
from typing import Any


class ExtractionFailure(StrEnum):
    NO_JSON_FOUND = "no_json_found"
    MALFORMED_JSON = "malformed_json"


class JsonExtractionError(ValueError):
    """Raised when generator output does not contain a parseable JSON object."""

    def __init__(
        self,
        message: str,
        *,
        kind: ExtractionFailure,
        fragment: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.fragment = fragment


def extract_json(raw_text: str) -> Any:
    """Parse the span between the first ``{`` and the last ``}`` of ``raw_text``.

    Generators tend to wrap JSON in prose or code fences, so anything outside that
    span is ignored. Braces inside unrelated prose can confuse the scan; that is a
    known limitation of this approach, not something callers should rely on.
    """
    text = raw_text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        raise JsonExtractionError(
            "No JSON object found in codex output.",
            kind=ExtractionFailure.NO_JSON_FOUND,
        )
    fragment = text[start : end + 1]
    try:
        return json.loads(fragment)
    except (ValueError, RecursionError) as exc:
        # ValueError covers JSONDecodeError and the int digit limit; deep nesting recurses.
        if isinstance(exc, json.JSONDecodeError):
            detail = f"{exc.msg} (line {exc.lineno}, column {exc.colno})"
        else:
            detail = str(exc) or type(exc).__name__
        raise JsonExtractionError(
            f"Malformed JSON in codex output: {detail}",
            kind=ExtractionFailure.MALFORMED_JSON,
            fragment=fragment,
        ) from exc

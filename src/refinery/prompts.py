from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

COMPLETION_MARKER = "[DRAFT: to be expanded]"
COMPLETION_MARKER_SUFFIX = "(more to follow)"
DRAFT_COMPLETENESS = 50
JSON_ONLY_DIRECTIVE = "IMPORTANT: Output JSON ONLY. Do not include any other text."

_MARKER_PATTERN = re.compile(
    rf"{re.escape(COMPLETION_MARKER)}(?:\s*{re.escape(COMPLETION_MARKER_SUFFIX)})?"
)
_INLINE_BLANKS = re.compile(r"[ \t]{2,}")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")

PLAN_JSON_SCHEMA = """{
  "candidates": [
    { "name": string, "reason": string, "budget_yen": number, "walk_min": number, "vibe": string, "tabelog_url": string }
  ],
  "final_message": string
}"""


class WorkflowKind(StrEnum):
    REPLY_DRAFT = "reply_draft"
    REPLY_REFINE = "reply_refine"
    PLAN = "plan"


@dataclass(frozen=True, slots=True)
class PassMetadata:
    pass_index: int
    total_passes: int
    target_completeness: int
    is_final_pass: bool


def target_completeness(pass_index: int, total_passes: int) -> int:
    if total_passes <= 1:
        return 100
    clamped = min(max(pass_index, 1), total_passes)
    step = (100 - DRAFT_COMPLETENESS) / (total_passes - 1)
    # Half-up rounding; round() would send 62.5 to 62.
    return int(math.floor(DRAFT_COMPLETENESS + step * (clamped - 1) + 0.5))


def build_pass_metadata(pass_index: int, total_passes: int) -> PassMetadata:
    return PassMetadata(
        pass_index=pass_index,
        total_passes=total_passes,
        target_completeness=target_completeness(pass_index, total_passes),
        is_final_pass=pass_index >= total_passes,
    )


def has_completion_marker(text: str) -> bool:
    return COMPLETION_MARKER in (text or "")


def strip_completion_marker(text: str) -> str:
    """Return the display form of ``text``; text without the marker is returned as is."""
    if not has_completion_marker(text):
        return text or ""
    out = text
    # Removing one marker can splice the halves of another into a new one.
    while has_completion_marker(out):
        out = _MARKER_PATTERN.sub("", out)
    out = _INLINE_BLANKS.sub(" ", out)
    out = _EXTRA_NEWLINES.sub("\n\n", out)
    return out.strip()


COMMON_POLICIES = """
Common rules:
- Be concise and practical. Lead with the answer, then reasons and next steps if needed.
- Do not describe internal steps, reasoning, or tool logs.
- State uncertain points as assumptions or possibilities, never as facts.
- Ask at most one question, and only when an answer is impossible without it.

Chat readability rules:
- Use chat mrkdwn only: *bold*, `inline code`, ```code block```.
- Prefer <https://example.com|label> links; bare URLs are acceptable.
- Bullets start with "- " or "• ".
- Insert a blank line every 2-4 lines; avoid long single paragraphs.
- Never use Markdown links [text](url), # headings, HTML tags, or tables.
- Never use broadcast mentions (<!here>, <!channel>, <!everyone>) unless explicitly asked.

Output constraints:
- Output only the message body to post. No JSON, preamble, or self-introduction.
- Self-check the chat markup right before answering and fix any violation.
""".strip()


class PromptBuilder:
    """Builds generator prompts for every workflow from one place."""

    def __init__(self, common_policies: str = COMMON_POLICIES) -> None:
        self.common_policies = common_policies
        self._renderers = {
            WorkflowKind.REPLY_DRAFT: self._reply_draft,
            WorkflowKind.REPLY_REFINE: self._reply_refine,
            WorkflowKind.PLAN: self._plan,
        }

    def build(
        self,
        kind: WorkflowKind,
        request_text: str,
        context: dict[str, Any] | None = None,
        *,
        meta: PassMetadata | None = None,
        draft: str | None = None,
    ) -> str:
        renderer = self._renderers[WorkflowKind(kind)]
        return renderer(request_text, context, meta, draft).strip()

    @staticmethod
    def with_json_only_directive(prompt: str) -> str:
        return f"{prompt}\n\n{JSON_ONLY_DIRECTIVE}"

    @staticmethod
    def _input_section(
        request_text: str,
        context: dict[str, Any] | None,
        draft: str | None = None,
    ) -> str:
        parts = [
            "User message:",
            json.dumps(request_text, ensure_ascii=False),
            "Chat context (JSON, if available):",
            json.dumps(context or None, ensure_ascii=False),
        ]
        if draft:
            parts.append("Draft answer:")
            parts.append(json.dumps(draft, ensure_ascii=False))
        return "\n".join(parts)

    @staticmethod
    def _require_meta(kind: WorkflowKind, meta: PassMetadata | None) -> PassMetadata:
        if meta is None:
            raise ValueError(f"{kind} prompts require pass metadata.")
        return meta

    def _reply_draft(
        self,
        request_text: str,
        context: dict[str, Any] | None,
        meta: PassMetadata | None,
        draft: str | None,
    ) -> str:
        meta = self._require_meta(WorkflowKind.REPLY_DRAFT, meta)
        phase = "final answer" if meta.is_final_pass else "draft"
        if meta.is_final_pass:
            marker_rule = "This is the last pass: do not add the incomplete marker. Finish the answer."
        else:
            marker_rule = (
                "If the answer is incomplete, end it with "
                f'"{COMPLETION_MARKER} {COMPLETION_MARKER_SUFFIX}".'
            )
        return f"""
You are an assistant replying in a team chat channel.
Reply phase: {meta.pass_index}/{meta.total_passes} ({phase})
Target completeness for this pass: {meta.target_completeness}%

Goal of this phase:
- Return a useful first answer as fast as possible.
- Give a short conclusion first, with the minimum reasoning and steps.
- Add reference links when available.

Draft rules:
- Even with gaps, answer with what you know.
- {marker_rule}

{self.common_policies}

Input:
{self._input_section(request_text, context)}
"""

    def _reply_refine(
        self,
        request_text: str,
        context: dict[str, Any] | None,
        meta: PassMetadata | None,
        draft: str | None,
    ) -> str:
        meta = self._require_meta(WorkflowKind.REPLY_REFINE, meta)
        if not draft:
            raise ValueError("Refine prompts require the previous draft.")
        if meta.is_final_pass:
            marker_rule = "This is the last pass: remove the marker. State assumptions if needed."
        else:
            marker_rule = "Keep the marker only if gaps remain after this pass."
        return f"""
You are an assistant replying in a team chat channel.
Reply phase: {meta.pass_index}/{meta.total_passes} (refinement)
Target completeness for this pass: {meta.target_completeness}%

Goal of this phase:
- Improve the draft into a more accurate and practical answer.
- Fill missing information, fix mistakes, and remove vague wording.
- Keep what is good and change only what needs improving.

Refinement rules:
- If the draft contains "{COMPLETION_MARKER}", remove it once the gaps are filled.
- {marker_rule}
- Weaken claims that lack support, or state the assumption behind them.

{self.common_policies}

Input:
{self._input_section(request_text, context, draft)}
"""

    def _plan(
        self,
        request_text: str,
        context: dict[str, Any] | None,
        meta: PassMetadata | None,
        draft: str | None,
    ) -> str:
        return f"""
You are a hangout planning assistant.

User request (raw chat text):
{json.dumps(request_text, ensure_ascii=False)}

Chat context (JSON, if available):
{json.dumps(context or None, ensure_ascii=False)}

Rules:
- Output VALID JSON ONLY. No markdown. No prose.
- Follow this JSON schema exactly:
{PLAN_JSON_SCHEMA}
- Propose exactly 3 candidates.
- If information is missing, make reasonable assumptions instead of asking questions.
- Include a Tabelog URL for each candidate in "tabelog_url".
- Use the user's locale and context when possible. If unclear, assume Japan and typical local venues.
"""

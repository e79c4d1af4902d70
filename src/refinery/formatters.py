from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

UNSPECIFIED = "unspecified"

_BOT_MENTION = re.compile(r"^<@[^>]+>\s*")
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)]+)\)")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+)$", re.MULTILINE)
_DOUBLE_BOLD = re.compile(r"\*\*(.+?)\*\*")
_BULLET = re.compile(r"^\s*[-*]\s+", re.MULTILINE)


def strip_bot_mention(text: str) -> str:
    return _BOT_MENTION.sub("", text or "").strip()


def to_chat_links(text: str) -> str:
    return _MARKDOWN_LINK.sub(r"<\2|\1>", text or "")


def to_chat_markdown(text: str) -> str:
    """Rewrite common Markdown into chat mrkdwn (headings, bold, bullets, links)."""
    out = text or ""
    out = _HEADING.sub(r"*\1*", out)
    out = _DOUBLE_BOLD.sub(r"*\1*", out)
    out = _BULLET.sub("• ", out)
    out = to_chat_links(out)
    return out.strip()


@dataclass(frozen=True, slots=True)
class SearchConditions:
    area: str = UNSPECIFIED
    budget: str = UNSPECIFIED
    people: str = UNSPECIFIED
    time: str = UNSPECIFIED


def parse_search_conditions(request_text: str) -> SearchConditions:
    parts = (request_text or "").split()
    padded = parts[:4] + [UNSPECIFIED] * (4 - len(parts[:4]))
    area, budget, people, start = padded
    return SearchConditions(area=area, budget=budget, people=people, time=start)


def format_search_conditions(request_text: str) -> str:
    cond = parse_search_conditions(request_text)
    return (
        f"🔎 Search: area={cond.area}, budget={cond.budget} yen/person, "
        f"people={cond.people}, start={cond.time}"
    )


def format_plan_message(plan: Mapping[str, Any]) -> str:
    candidates = plan.get("candidates") or []
    if not isinstance(candidates, list):
        candidates = []
    lines = [f"🍻 *Candidates ({len(candidates)})*"]
    for index, candidate in enumerate(candidates, start=1):
        if not isinstance(candidate, Mapping):
            continue
        reason = to_chat_markdown(str(candidate.get("reason") or ""))
        url = candidate.get("tabelog_url")
        url_line = f"\n• <{url}|Tabelog>" if url else ""
        lines.append(
            f"*{index}. {candidate.get('name', '')}* "
            f"(¥{candidate.get('budget_yen', '?')} / {candidate.get('walk_min', '?')} min walk / "
            f"{candidate.get('vibe', '')})\n• {reason}{url_line}"
        )
    final_message = plan.get("final_message")
    if final_message:
        lines.append(f"\n📣 *Meetup message*\n{to_chat_markdown(str(final_message))}")
    return "\n".join(lines)

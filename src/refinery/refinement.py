from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from refinery.backends.base import (
    BackendEmptyOutputError,
    GenerationRequest,
    GeneratorBackend,
)
from refinery.config import RefineryConfig
from refinery.diagnosis import classify, diagnose
from refinery.prompts import (
    PromptBuilder,
    WorkflowKind,
    build_pass_metadata,
    has_completion_marker,
    strip_completion_marker,
)

logger = logging.getLogger(__name__)

REPLY_FAILURE_PREFIX = "⚠️ Could not generate a reply."

EventHook = Callable[[dict[str, Any]], None]


class ProgressStage(StrEnum):
    DRAFT = "draft"
    REFINED = "refined"


class ReplyOutcome(StrEnum):
    DRAFT_ONLY = "draft_only"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    stage: ProgressStage
    text: str
    pass_index: int
    total_passes: int
    pending: bool


ProgressObserver = Callable[[ProgressEvent], Awaitable[None]]


@dataclass(slots=True)
class ReplyResult:
    ok: bool
    text: str
    refined: bool = False
    outcome: ReplyOutcome = ReplyOutcome.DRAFT_ONLY
    passes: int = 0
    debug: dict[str, Any] = field(default_factory=dict)


def _error_details(error: BaseException) -> dict[str, Any]:
    return {
        "error": str(error),
        "kind": str(classify(error)),
        "stderr": getattr(error, "stderr", None),
        "stdout": getattr(error, "stdout", None),
    }


class RefinementEngine:
    """Drafts a free-text reply, then refines it until the completion marker disappears."""

    def __init__(
        self,
        backend: GeneratorBackend,
        config: RefineryConfig,
        prompt_builder: PromptBuilder | None = None,
        event_hook: EventHook | None = None,
    ) -> None:
        self.backend = backend
        self.config = config
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _request(self, prompt: str) -> GenerationRequest:
        return GenerationRequest(
            prompt=prompt,
            working_directory=self.config.backend.resolve_working_directory(),
            timeout_seconds=self.config.backend.timeout,
        )

    @staticmethod
    async def _notify(on_progress: ProgressObserver | None, event: ProgressEvent) -> None:
        if on_progress is None:
            return
        try:
            await on_progress(event)
        except Exception:
            logger.exception(
                "Progress observer failed for %s pass %d", event.stage, event.pass_index
            )

    def _failure(self, error: Exception) -> ReplyResult:
        hint = diagnose(error)
        details = _error_details(error)
        logger.error("Reply generation failed: %s", details)
        text = f"{REPLY_FAILURE_PREFIX} Reason: {hint}"
        if self.config.output.debug:
            text = f"{text}\nDetails: {error}"
        return ReplyResult(
            ok=False,
            text=text,
            outcome=ReplyOutcome.FAILED,
            passes=1,
            debug={"error": details["error"], "stderr": details["stderr"]},
        )

    async def respond(
        self,
        request_text: str,
        context: dict[str, Any] | None = None,
        on_progress: ProgressObserver | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ReplyResult:
        max_refines = self.config.refine.effective_max_refines
        total_passes = 1 + max_refines

        draft_prompt = self.prompt_builder.build(
            WorkflowKind.REPLY_DRAFT,
            request_text,
            context,
            meta=build_pass_metadata(1, total_passes),
        )
        self._emit({"event": "reply_pass_start", "pass": 1, "total_passes": total_passes})
        try:
            draft_internal = (await self.backend.invoke(self._request(draft_prompt))).strip()
            if not draft_internal:
                raise BackendEmptyOutputError("Empty response from codex.")
        except Exception as exc:
            return self._failure(exc)

        draft_display = strip_completion_marker(draft_internal)
        await self._notify(
            on_progress,
            ProgressEvent(
                stage=ProgressStage.DRAFT,
                text=draft_display,
                pass_index=1,
                total_passes=total_passes,
                pending=max_refines > 0,
            ),
        )

        current_internal = draft_internal
        current_display = draft_display
        passes = 1
        outcome = ReplyOutcome.DRAFT_ONLY if max_refines == 0 else ReplyOutcome.EXHAUSTED

        for attempt in range(max_refines):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Reply refinement cancelled before pass %d", attempt + 2)
                outcome = ReplyOutcome.CANCELLED
                break

            pass_index = attempt + 2
            refine_prompt = self.prompt_builder.build(
                WorkflowKind.REPLY_REFINE,
                request_text,
                context,
                meta=build_pass_metadata(pass_index, total_passes),
                draft=current_internal,
            )
            self._emit(
                {"event": "reply_pass_start", "pass": pass_index, "total_passes": total_passes}
            )
            try:
                raw = await self.backend.invoke(self._request(refine_prompt))
            except Exception as exc:
                # The latest good text is still worth returning.
                logger.warning("Reply refine pass %d failed: %s", pass_index, _error_details(exc))
                self._emit({"event": "reply_refine_failed", "pass": pass_index, "error": str(exc)})
                outcome = ReplyOutcome.ABORTED
                break

            passes = pass_index
            refined_internal = raw.strip()
            if refined_internal and refined_internal != current_internal:
                current_internal = refined_internal
                current_display = strip_completion_marker(current_internal)
                remaining = max_refines - attempt - 1
                await self._notify(
                    on_progress,
                    ProgressEvent(
                        stage=ProgressStage.REFINED,
                        text=current_display,
                        pass_index=pass_index,
                        total_passes=total_passes,
                        pending=has_completion_marker(current_internal) and remaining > 0,
                    ),
                )

            if not has_completion_marker(current_internal):
                outcome = ReplyOutcome.CONVERGED
                break

        self._emit({"event": "reply_complete", "outcome": str(outcome), "passes": passes})
        return ReplyResult(
            ok=True,
            text=current_display,
            refined=current_internal != draft_internal,
            outcome=outcome,
            passes=passes,
        )

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from refinery.backends.base import GenerationRequest, GeneratorBackend
from refinery.config import RefineryConfig
from refinery.diagnosis import diagnose
from refinery.extraction import extract_json
from refinery.formatters import format_plan_message
from refinery.prompts import PromptBuilder, WorkflowKind

logger = logging.getLogger(__name__)

PLAN_FAILURE_PREFIX = "⚠️ Could not generate suggestions."
PLAN_USAGE_EXAMPLE = "/hangout Roppongi 5000 4 19:30"

EventHook = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class PlanResult:
    ok: bool
    text: str
    payload: dict[str, Any] | None = None
    attempts: int = 0
    debug: dict[str, Any] = field(default_factory=dict)


class PlanningWorkflow:
    """Asks the generator for a JSON plan, retrying once with a stricter directive."""

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

    async def _attempt(self, prompt: str) -> dict[str, Any]:
        stdout = await self.backend.invoke(
            GenerationRequest(
                prompt=prompt,
                working_directory=self.config.backend.resolve_working_directory(),
                timeout_seconds=self.config.backend.timeout,
            )
        )
        return extract_json(stdout)

    def _success(self, payload: dict[str, Any], attempts: int) -> PlanResult:
        self._emit({"event": "plan_complete", "attempts": attempts})
        return PlanResult(
            ok=True,
            text=format_plan_message(payload),
            payload=payload,
            attempts=attempts,
        )

    def _failure(self, first: Exception, second: Exception | None) -> PlanResult:
        primary = second or first
        hint = diagnose(primary)
        debug = {
            "error1": str(first),
            "error2": str(second) if second is not None else None,
            "stderr": getattr(second, "stderr", None) or getattr(first, "stderr", None),
        }
        logger.error(
            "Plan generation failed: %s",
            {
                **debug,
                "stdout": getattr(second, "stdout", None) or getattr(first, "stdout", None),
            },
        )
        if self.config.output.debug:
            text = f"{PLAN_FAILURE_PREFIX}\nReason: {hint}\nDetails: {primary}"
        else:
            text = (
                f"{PLAN_FAILURE_PREFIX} Try again with shorter conditions "
                f"(example: `{PLAN_USAGE_EXAMPLE}`).\nReason: {hint}"
            )
        self._emit({"event": "plan_failed", "error": str(primary)})
        return PlanResult(ok=False, text=text, attempts=2, debug=debug)

    async def plan(self, request_text: str, context: dict[str, Any] | None = None) -> PlanResult:
        base_prompt = self.prompt_builder.build(WorkflowKind.PLAN, request_text, context)
        try:
            payload = await self._attempt(base_prompt)
        except Exception as first_error:
            first = first_error
        else:
            return self._success(payload, attempts=1)
        logger.info("Plan attempt 1 failed, retrying with JSON-only directive: %s", first)
        self._emit({"event": "plan_retry", "error": str(first)})

        strict_prompt = self.prompt_builder.with_json_only_directive(base_prompt)
        try:
            payload = await self._attempt(strict_prompt)
        except Exception as second_error:
            return self._failure(first, second_error)
        return self._success(payload, attempts=2)

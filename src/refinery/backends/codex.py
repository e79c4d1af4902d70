from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from refinery.backends.base import (
    BackendAuthError,
    BackendEmptyOutputError,
    BackendNotFoundError,
    BackendProcessError,
    BackendTimeoutError,
    GenerationRequest,
    GeneratorBackend,
)

logger = logging.getLogger(__name__)

AUTH_MARKERS = ("not logged in", "login", "auth")


class CodexBackend(GeneratorBackend):
    """Runs ``codex exec`` once per request and captures its stdout."""

    def __init__(
        self,
        binary: str = "codex",
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.binary = binary
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    def build_command(self, request: GenerationRequest) -> list[str]:
        # "-" makes codex read the prompt from stdin; refine prompts outgrow argv limits.
        return [self.binary, "exec", "--skip-git-repo-check", "-"]

    @staticmethod
    def _decode(raw: bytes | None) -> str:
        if not raw:
            return ""
        return raw.decode("utf-8", errors="replace")

    @staticmethod
    def _looks_like_auth_failure(stderr_output: str) -> bool:
        lowered = stderr_output.lower()
        return any(marker in lowered for marker in AUTH_MARKERS)

    async def invoke(self, request: GenerationRequest) -> str:
        command = self.build_command(request)
        cwd = str(request.working_directory) if request.working_directory else None
        if request.working_directory is not None and not request.working_directory.is_dir():
            raise BackendProcessError(
                f"Codex working directory does not exist: {request.working_directory}",
                backend="codex",
            )
        self._emit(
            {
                "event": "codex_cli_start",
                "command": command[:3],
                "prompt_chars": len(request.prompt),
                "timeout_seconds": request.timeout_seconds,
            }
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise BackendNotFoundError(
                f"spawn {self.binary} ENOENT: Codex binary not found or not executable"
                f" ({exc.filename or self.binary})",
                backend="codex",
            ) from exc
        except OSError as exc:
            raise BackendProcessError(
                f"Codex process could not be started: {exc}",
                backend="codex",
            ) from exc

        prompt_bytes = request.prompt.encode("utf-8")
        try:
            if request.timeout_seconds is not None:
                raw_stdout, raw_stderr = await asyncio.wait_for(
                    process.communicate(input=prompt_bytes), timeout=request.timeout_seconds
                )
            else:
                raw_stdout, raw_stderr = await process.communicate(input=prompt_bytes)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            self._emit({"event": "codex_cli_timeout", "timeout_seconds": request.timeout_seconds})
            raise BackendTimeoutError(
                f"Codex request timed out after {request.timeout_seconds:.1f}s",
                backend="codex",
            ) from exc

        stdout_output = self._decode(raw_stdout)
        stderr_output = self._decode(raw_stderr).strip()
        return_code = process.returncode
        self._emit(
            {
                "event": "codex_cli_exit",
                "exit_code": return_code,
                "stdout_chars": len(stdout_output),
                "stderr": stderr_output[:400],
            }
        )

        if return_code != 0:
            logger.debug("codex exited with %s: %s", return_code, stderr_output[:400])
            error_type = (
                BackendAuthError
                if self._looks_like_auth_failure(stderr_output)
                else BackendProcessError
            )
            raise error_type(
                f"Codex backend failed with exit code {return_code}: {stderr_output}",
                backend="codex",
                exit_code=return_code,
                stdout=stdout_output,
                stderr=stderr_output,
            )
        if not stdout_output.strip():
            raise BackendEmptyOutputError(
                "Empty response from codex.",
                backend="codex",
                exit_code=return_code,
                stdout=stdout_output,
                stderr=stderr_output,
            )
        return stdout_output

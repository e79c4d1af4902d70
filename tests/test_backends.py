import asyncio
import errno
from pathlib import Path
from typing import Any

import pytest

from refinery.backends import (
    BackendAuthError,
    BackendEmptyOutputError,
    BackendNotFoundError,
    BackendProcessError,
    BackendTimeoutError,
    CodexBackend,
    FailureKind,
    GenerationRequest,
)


class FakeProcess:
    def __init__(
        self,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        delay: float = 0.0,
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self._delay = delay
        self.returncode: int | None = None
        self._final_code = returncode
        self.killed = False
        self.received_input: bytes | None = None

    async def communicate(self, input: bytes | None = None) -> tuple[bytes, bytes]:
        self.received_input = input
        if self._delay:
            await asyncio.sleep(self._delay)
        self.returncode = self._final_code
        return self._stdout, self._stderr

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    async def wait(self) -> int:
        return self.returncode if self.returncode is not None else self._final_code


def _patch_spawn(monkeypatch: pytest.MonkeyPatch, process: FakeProcess) -> dict[str, Any]:
    captured: dict[str, Any] = {"calls": 0}

    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        captured["calls"] += 1
        captured["args"] = args
        captured["kwargs"] = kwargs
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)
    return captured


def test_generation_request_rejects_empty_prompt() -> None:
    with pytest.raises(ValueError):
        GenerationRequest(prompt="   ")


def test_codex_build_command_shape() -> None:
    backend = CodexBackend(binary="codex")
    command = backend.build_command(GenerationRequest(prompt="say hello"))

    assert command[0:2] == ["codex", "exec"]
    assert "--skip-git-repo-check" in command
    assert command[-1] == "-"
    assert "say hello" not in command


def test_codex_returns_stdout_verbatim(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict[str, Any]] = []
    captured = _patch_spawn(monkeypatch, FakeProcess(stdout=b"  hello there\n"))
    backend = CodexBackend(event_hook=events.append)

    output = asyncio.run(
        backend.invoke(GenerationRequest(prompt="hi", working_directory=Path("/tmp")))
    )

    assert output == "  hello there\n"
    assert captured["calls"] == 1
    assert captured["kwargs"]["cwd"] == "/tmp"
    event_names = [event["event"] for event in events]
    assert event_names == ["codex_cli_start", "codex_cli_exit"]


def test_codex_missing_binary_maps_to_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        _ = args, kwargs
        raise FileNotFoundError("codex")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)
    backend = CodexBackend()

    with pytest.raises(BackendNotFoundError) as excinfo:
        asyncio.run(backend.invoke(GenerationRequest(prompt="hi")))

    assert excinfo.value.kind is FailureKind.NOT_FOUND
    assert "spawn codex" in str(excinfo.value).lower()


def test_codex_auth_failure_is_classified(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_spawn(
        monkeypatch,
        FakeProcess(stderr=b"Error: Not logged in. Run codex login.", returncode=1),
    )

    with pytest.raises(BackendAuthError) as excinfo:
        asyncio.run(CodexBackend().invoke(GenerationRequest(prompt="hi")))

    assert excinfo.value.kind is FailureKind.AUTH_REQUIRED
    assert excinfo.value.exit_code == 1
    assert "Not logged in" in (excinfo.value.stderr or "")


def test_codex_nonzero_exit_is_generic_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_spawn(
        monkeypatch,
        FakeProcess(stdout=b"partial", stderr=b"model overloaded", returncode=2),
    )

    with pytest.raises(BackendProcessError) as excinfo:
        asyncio.run(CodexBackend().invoke(GenerationRequest(prompt="hi")))

    assert excinfo.value.kind is FailureKind.GENERIC_FAILURE
    assert excinfo.value.stdout == "partial"
    assert "exit code 2" in str(excinfo.value)


def test_codex_blank_stdout_is_empty_output(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_spawn(monkeypatch, FakeProcess(stdout=b"  \n"))

    with pytest.raises(BackendEmptyOutputError) as excinfo:
        asyncio.run(CodexBackend().invoke(GenerationRequest(prompt="hi")))

    assert excinfo.value.kind is FailureKind.EMPTY_OUTPUT


def test_codex_timeout_kills_process(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict[str, Any]] = []
    process = FakeProcess(stdout=b"late", delay=5.0)
    _patch_spawn(monkeypatch, process)
    backend = CodexBackend(event_hook=events.append)

    with pytest.raises(BackendTimeoutError) as excinfo:
        asyncio.run(backend.invoke(GenerationRequest(prompt="hi", timeout_seconds=0.01)))

    assert process.killed is True
    assert "timed out" in str(excinfo.value)
    assert excinfo.value.kind is FailureKind.TIMED_OUT
    assert "codex_cli_timeout" in [event["event"] for event in events]


def test_codex_sends_prompt_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeProcess(stdout=b"ok")
    captured = _patch_spawn(monkeypatch, process)
    long_prompt = "draft line\n" * 30_000

    output = asyncio.run(CodexBackend().invoke(GenerationRequest(prompt=long_prompt)))

    assert output == "ok"
    assert process.received_input == long_prompt.encode("utf-8")
    assert long_prompt not in captured["args"]
    assert captured["kwargs"]["stdin"] == asyncio.subprocess.PIPE


def test_codex_spawn_os_error_is_process_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        _ = args, kwargs
        raise OSError(errno.E2BIG, "Argument list too long")

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)

    with pytest.raises(BackendProcessError) as excinfo:
        asyncio.run(CodexBackend().invoke(GenerationRequest(prompt="hi")))

    assert excinfo.value.kind is FailureKind.GENERIC_FAILURE
    assert "Argument list too long" in str(excinfo.value)


def test_codex_missing_working_directory_is_not_reported_as_missing_binary(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    captured = _patch_spawn(monkeypatch, FakeProcess(stdout=b"unused"))
    missing = tmp_path / "gone"

    with pytest.raises(BackendProcessError) as excinfo:
        asyncio.run(
            CodexBackend().invoke(GenerationRequest(prompt="hi", working_directory=missing))
        )

    assert not isinstance(excinfo.value, BackendNotFoundError)
    assert str(missing) in str(excinfo.value)
    assert "enoent" not in str(excinfo.value).lower()
    assert captured["calls"] == 0

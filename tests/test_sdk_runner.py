"""Tests for the Claude Agent SDK runner, with ``query`` replaced."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    CLINotFoundError,
    ProcessError,
    ResultMessage,
    TextBlock,
)

from codestory.agents import create_agent_runner, sdk
from codestory.agents.sdk import SDKAgentRunner, create_story_options
from codestory.core.config import Settings
from codestory.core.errors import AgentSpawnError


def _result(is_error: bool = False) -> ResultMessage:
    return ResultMessage(
        subtype="error_during_execution" if is_error else "success",
        duration_ms=1500,
        duration_api_ms=1200,
        is_error=is_error,
        num_turns=3,
        session_id="session-1",
    )


def _assistant(*texts: str) -> AssistantMessage:
    return AssistantMessage(content=[TextBlock(text=text) for text in texts], model="claude-sonnet")


class FakeQuery:
    """Replays messages, then optionally raises, recording each call."""

    def __init__(self, messages: list[Any], error: Exception | None = None) -> None:
        self.messages = messages
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, *, prompt: str, options: ClaudeAgentOptions) -> AsyncIterator[Any]:
        self.calls.append({"prompt": prompt, "options": options})
        for message in self.messages:
            yield message
        if self.error is not None:
            raise self.error


@pytest.fixture
def fake_query(monkeypatch: pytest.MonkeyPatch):
    def install(messages: list[Any], error: Exception | None = None) -> FakeQuery:
        fake = FakeQuery(messages, error)
        monkeypatch.setattr(sdk, "query", fake)
        return fake

    return install


class TestStoryOptions:
    def test_options_scope_the_generation(self, tmp_path: Path) -> None:
        stderr: list[str] = []
        working_dir = tmp_path / "work"

        options = create_story_options(
            working_dir, tmp_path, allowed_tools=("Read", "Write"), stderr=stderr, max_turns=5
        )

        assert options.allowed_tools == ["Read", "Write"]
        assert options.add_dirs == [str(working_dir)]
        assert options.cwd == str(tmp_path)
        assert options.max_turns == 5
        options.stderr("line")
        assert stderr == ["line"]

    def test_stderr_callback_optional(self, tmp_path: Path) -> None:
        assert create_story_options(tmp_path, tmp_path).stderr is None


class TestSDKAgentRunner:
    @pytest.mark.asyncio
    async def test_collects_text_and_succeeds(self, fake_query, tmp_path: Path) -> None:
        fake = fake_query([_assistant("Reading files", "Writing story"), _result()])
        runner = SDKAgentRunner(allowed_tools=["Read"], max_turns=10)

        outcome = await runner.run("tell the story", tmp_path / "work", tmp_path)

        assert outcome.exit_code == 0
        assert outcome.stdout == "Reading files\nWriting story"
        assert outcome.stderr == ""
        assert fake.calls[0]["prompt"] == "tell the story"
        options = fake.calls[0]["options"]
        assert options.allowed_tools == ["Read"]
        assert options.max_turns == 10
        assert options.add_dirs == [str(tmp_path / "work")]

    @pytest.mark.asyncio
    async def test_error_result_exits_non_zero(self, fake_query, tmp_path: Path) -> None:
        fake_query([_assistant("Giving up"), _result(is_error=True)])

        outcome = await SDKAgentRunner().run("prompt", tmp_path, tmp_path)

        assert outcome.exit_code == 1
        assert outcome.stdout == "Giving up"

    @pytest.mark.asyncio
    async def test_missing_cli_is_spawn_failure(self, fake_query, tmp_path: Path) -> None:
        fake_query([], error=CLINotFoundError("Claude Code not found"))

        with pytest.raises(AgentSpawnError) as exc_info:
            await SDKAgentRunner().run("prompt", tmp_path, tmp_path)

        assert exc_info.value.code == "spawn_failure"
        assert isinstance(exc_info.value.__cause__, CLINotFoundError)

    @pytest.mark.asyncio
    async def test_process_error_keeps_exit_code_and_stderr(self, fake_query, tmp_path: Path) -> None:
        fake_query([_assistant("partial")], error=ProcessError("agent crashed", exit_code=2, stderr="boom"))

        outcome = await SDKAgentRunner().run("prompt", tmp_path, tmp_path)

        assert outcome.exit_code == 2
        assert outcome.stderr == "boom"
        assert outcome.stdout == "partial"

    @pytest.mark.asyncio
    async def test_process_error_without_exit_code(self, fake_query, tmp_path: Path) -> None:
        fake_query([], error=ProcessError("agent crashed"))

        outcome = await SDKAgentRunner().run("prompt", tmp_path, tmp_path)

        assert outcome.exit_code == 1
        assert outcome.stderr == ""


class TestCreateAgentRunner:
    def test_sdk_backend(self) -> None:
        settings = Settings(_env_file=None, agent_backend="sdk", agent_allowed_tools="Read, Glob")

        runner = create_agent_runner(settings)

        assert isinstance(runner, SDKAgentRunner)
        assert runner.allowed_tools == ["Read", "Glob"]

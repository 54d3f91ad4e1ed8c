"""Tests for the agent runners, driving real subprocesses."""

from __future__ import annotations

import asyncio
import os
import sys
import textwrap
import time
from pathlib import Path

import pytest

from codestory.agents import CLIAgentRunner, create_agent_runner
from codestory.core.config import Settings
from codestory.core.errors import AgentSpawnError

# Stand-in agent: reads the prompt from stdin and acts on the directory
# passed after --add-dir.
AGENT_PREAMBLE = textwrap.dedent(
    """
    import os, pathlib, signal, sys, time
    working_dir = pathlib.Path(sys.argv[sys.argv.index("--add-dir") + 1])
    prompt = sys.stdin.read()
    """
)


def _agent(body: str) -> list[str]:
    return [sys.executable, "-c", AGENT_PREAMBLE + textwrap.dedent(body)]


class TestCLIAgentRunner:
    """The CLI runner hands over the prompt and supervises the process."""

    def test_build_command(self, tmp_path: Path) -> None:
        runner = CLIAgentRunner("claude --model sonnet", extra_args=["--verbose"])

        assert runner.build_command(tmp_path) == [
            "claude",
            "--model",
            "sonnet",
            "-p",
            "--allowedTools",
            "Read,Grep,Glob,Write",
            "--add-dir",
            str(tmp_path),
            "--verbose",
        ]

    @pytest.mark.asyncio
    async def test_prompt_on_stdin_and_outcome(self, tmp_path: Path) -> None:
        runner = CLIAgentRunner(
            _agent(
                """
                (working_dir / "prompt.txt").write_text(prompt)
                (working_dir / "cwd.txt").write_text(os.getcwd())
                print("done")
                print("some warning", file=sys.stderr)
                sys.exit(3)
                """
            )
        )
        source = tmp_path / "source"
        source.mkdir()

        outcome = await runner.run("Explain the router", tmp_path, source)

        assert outcome.exit_code == 3
        assert outcome.stdout.strip() == "done"
        assert "some warning" in outcome.stderr
        assert (tmp_path / "prompt.txt").read_text() == "Explain the router"
        assert Path((tmp_path / "cwd.txt").read_text()).resolve() == source.resolve()

    @pytest.mark.asyncio
    async def test_unknown_command_is_a_spawn_failure(self, tmp_path: Path) -> None:
        runner = CLIAgentRunner("definitely-not-an-installed-agent-cli")

        with pytest.raises(AgentSpawnError) as exc_info:
            await runner.run("prompt", tmp_path, tmp_path)

        assert exc_info.value.code == "spawn_failure"

    @pytest.mark.asyncio
    async def test_cancellation_terminates_agent(self, tmp_path: Path) -> None:
        runner = CLIAgentRunner(
            _agent(
                """
                (working_dir / "pid").write_text(str(os.getpid()))
                time.sleep(60)
                """
            ),
            terminate_grace=2.0,
        )
        task = asyncio.create_task(runner.run("prompt", tmp_path, tmp_path))
        pid_file = tmp_path / "pid"
        while not pid_file.exists():
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())

        start = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert time.monotonic() - start < 10
        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    @pytest.mark.asyncio
    async def test_agent_ignoring_sigterm_is_killed(self, tmp_path: Path) -> None:
        runner = CLIAgentRunner(
            _agent(
                """
                signal.signal(signal.SIGTERM, signal.SIG_IGN)
                (working_dir / "pid").write_text(str(os.getpid()))
                time.sleep(60)
                """
            ),
            terminate_grace=0.2,
        )
        task = asyncio.create_task(runner.run("prompt", tmp_path, tmp_path))
        pid_file = tmp_path / "pid"
        while not pid_file.exists():
            await asyncio.sleep(0.05)
        pid = int(pid_file.read_text())

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)


class TestCreateAgentRunner:
    """Backend selection from settings."""

    def test_cli_backend(self) -> None:
        runner = create_agent_runner(
            Settings(_env_file=None, agent_command="my-agent", agent_allowed_tools="Read, Write")
        )

        assert isinstance(runner, CLIAgentRunner)
        assert runner.command == ["my-agent"]
        assert runner.allowed_tools == ["Read", "Write"]

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown agent backend"):
            create_agent_runner(Settings(_env_file=None, agent_backend="carrier-pigeon"))

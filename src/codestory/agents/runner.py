"""Agent runners.

An agent runner supervises one external agent task: it hands over the
prompt on standard input, restricts write access to the generation's
working directory, collects standard error, and reports the exit code. It
does not interpret anything the agent writes; the orchestrator watches the
working directory for that.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from codestory.core.errors import AgentSpawnError

logger = logging.getLogger("codestory.agents")

DEFAULT_ALLOWED_TOOLS = ("Read", "Grep", "Glob", "Write")


@dataclass(frozen=True)
class AgentOutcome:
    """How the agent process ended."""

    exit_code: int | None
    stderr: str = ""
    stdout: str = ""

    def stderr_excerpt(self, limit: int = 500) -> str:
        return self.stderr[:limit]


class AgentRunner(ABC):
    """Runs the agent to completion.

    Implementations must terminate the agent when the awaiting task is
    cancelled, then let ``CancelledError`` propagate.
    """

    @abstractmethod
    async def run(self, prompt: str, working_dir: Path, cwd: Path) -> AgentOutcome:
        """Run the agent.

        Args:
            prompt: Full instruction text, delivered on standard input
            working_dir: The only directory the agent may write to
            cwd: Source tree the agent reads

        Raises:
            AgentSpawnError: If the agent could not be started
        """


class CLIAgentRunner(AgentRunner):
    """Runs the agent CLI as a subprocess.

    Invocation::

        claude -p --allowedTools Read,Grep,Glob,Write --add-dir <working_dir>

    with the prompt on stdin and ``cwd`` as the current directory.
    """

    def __init__(
        self,
        command: str | Sequence[str] = "claude",
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        extra_args: Sequence[str] = (),
        terminate_grace: float = 5.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.allowed_tools = list(allowed_tools)
        self.extra_args = list(extra_args)
        self.terminate_grace = terminate_grace
        self.env = env

    def build_command(self, working_dir: Path) -> list[str]:
        return [
            *self.command,
            "-p",
            "--allowedTools",
            ",".join(self.allowed_tools),
            "--add-dir",
            str(working_dir),
            *self.extra_args,
        ]

    async def _stop(self, process: asyncio.subprocess.Process) -> None:
        """Terminate, then kill if the agent ignores SIGTERM."""
        if process.returncode is not None:
            return
        logger.info(f"Terminating agent process {process.pid}")
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning(f"Agent process {process.pid} ignored SIGTERM; killing")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def run(self, prompt: str, working_dir: Path, cwd: Path) -> AgentOutcome:
        cmd = self.build_command(working_dir)
        env = {**os.environ, **(self.env or {})}

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=env,
            )
        except OSError as e:
            raise AgentSpawnError(
                f"Failed to spawn agent CLI '{self.command[0]}': {e}",
                details={"command": self.command[0]},
            ) from e

        logger.debug(f"Agent process {process.pid} started in {cwd}")
        try:
            stdout, stderr = await process.communicate(prompt.encode("utf-8"))
        except asyncio.CancelledError:
            await asyncio.shield(self._stop(process))
            raise

        logger.info(f"Agent process exited with code {process.returncode}")
        return AgentOutcome(
            exit_code=process.returncode,
            stderr=stderr.decode("utf-8", errors="replace"),
            stdout=stdout.decode("utf-8", errors="replace"),
        )

"""Claude Agent SDK runner.

Drives the same agent through ``claude_agent_sdk.query`` instead of a raw
subprocess. The SDK manages the CLI process; this runner maps its errors
onto the generation error taxonomy and collects stderr through the SDK's
callback.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    CLINotFoundError,
    ProcessError,
    ResultMessage,
    TextBlock,
    query,
)

from codestory.core.errors import AgentSpawnError

from .runner import DEFAULT_ALLOWED_TOOLS, AgentOutcome, AgentRunner

logger = logging.getLogger("codestory.agents")


def create_story_options(
    working_dir: Path,
    cwd: Path,
    allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
    stderr: list[str] | None = None,
    max_turns: int | None = None,
) -> ClaudeAgentOptions:
    """Create SDK options scoped to one generation.

    Args:
        working_dir: Directory added as the agent's writable scope
        cwd: Source tree the agent reads
        allowed_tools: Tool allow-list
        stderr: List that receives stderr lines
        max_turns: Optional turn limit
    """
    return ClaudeAgentOptions(
        allowed_tools=list(allowed_tools),
        add_dirs=[str(working_dir)],
        cwd=str(cwd),
        stderr=stderr.append if stderr is not None else None,
        max_turns=max_turns,
    )


class SDKAgentRunner(AgentRunner):
    """Runs the agent via the Claude Agent SDK."""

    def __init__(
        self,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        max_turns: int | None = None,
    ) -> None:
        self.allowed_tools = list(allowed_tools)
        self.max_turns = max_turns

    async def run(self, prompt: str, working_dir: Path, cwd: Path) -> AgentOutcome:
        stderr_lines: list[str] = []
        stdout_parts: list[str] = []
        options = create_story_options(
            working_dir,
            cwd,
            allowed_tools=self.allowed_tools,
            stderr=stderr_lines,
            max_turns=self.max_turns,
        )

        exit_code: int | None = 0
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            stdout_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    exit_code = 1 if message.is_error else 0
                    logger.info(
                        f"Agent finished after {message.num_turns} turns "
                        f"({message.duration_ms / 1000:.1f}s)"
                    )
        except CLINotFoundError as e:
            raise AgentSpawnError(f"Failed to start agent via SDK: {e}") from e
        except ProcessError as e:
            logger.warning(f"Agent process failed: {e}")
            exit_code = e.exit_code if e.exit_code is not None else 1
            if e.stderr and not stderr_lines:
                stderr_lines.append(e.stderr)

        return AgentOutcome(
            exit_code=exit_code,
            stderr="\n".join(stderr_lines),
            stdout="\n".join(stdout_parts),
        )

"""Code Story agent runners.

The agent is an external process that explores the codebase and writes
the story. Two runners drive it:

- ``CLIAgentRunner``: spawns the ``claude`` CLI directly (default)
- ``SDKAgentRunner``: drives the agent through the Claude Agent SDK

Usage:
    from codestory.agents import create_agent_runner

    runner = create_agent_runner(settings)
    outcome = await runner.run(prompt, working_dir, cwd=source_dir)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .runner import DEFAULT_ALLOWED_TOOLS, AgentOutcome, AgentRunner, CLIAgentRunner

if TYPE_CHECKING:
    from codestory.core.config import Settings


def create_agent_runner(settings: Settings) -> AgentRunner:
    """Build the runner selected by ``settings.agent_backend``."""
    backend = settings.agent_backend.lower()
    if backend == "cli":
        return CLIAgentRunner(
            command=settings.agent_command,
            allowed_tools=settings.allowed_tools,
            extra_args=settings.agent_extra_args,
            terminate_grace=settings.agent_terminate_grace,
        )
    if backend == "sdk":
        from .sdk import SDKAgentRunner

        return SDKAgentRunner(allowed_tools=settings.allowed_tools)
    raise ValueError(f"Unknown agent backend: {settings.agent_backend!r} (expected 'cli' or 'sdk')")


__all__ = [
    "DEFAULT_ALLOWED_TOOLS",
    "AgentOutcome",
    "AgentRunner",
    "CLIAgentRunner",
    "create_agent_runner",
]

"""Shared fixtures for Code Story tests."""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from codestory.agents import AgentOutcome, AgentRunner
from codestory.core.config import Settings
from codestory.pipeline import STAGES
from codestory.services import StoryCatalog


def make_story_document(story_id: str | None = None, **overrides: Any) -> dict[str, Any]:
    """A valid story document in wire form."""
    document: dict[str, Any] = {
        "id": story_id or str(uuid.uuid4()),
        "title": "How requests are routed",
        "query": "How does routing work?",
        "repo": None,
        "commitHash": "0123456789abcdef0123456789abcdef01234567",
        "createdAt": "2026-01-15T10:30:00.000Z",
        "chapters": [
            {
                "id": "chapter-0",
                "label": "Overview",
                "snippets": [],
                "explanation": "# Overview\n\nRequests pass through three layers.",
            },
            {
                "id": "chapter-1",
                "label": "The router table",
                "snippets": [
                    {
                        "filePath": "src/router.py",
                        "startLine": 10,
                        "endLine": 14,
                        "content": "def route(path):\n    for rule in RULES:\n        if rule.match(path):\n            return rule\n    return None",
                    }
                ],
                "explanation": "Lines 10-14 walk the rule table in order.",
            },
            {
                "id": "chapter-2",
                "label": "Summary",
                "snippets": [],
                "explanation": "Routing is a linear scan over ordered rules.",
            },
        ],
    }
    document.update(overrides)
    return document


def write_stage_files(working_dir: Path, completed: int, story: dict[str, Any] | None = None) -> None:
    """Write what an agent leaves behind after ``completed`` stages."""
    working_dir.mkdir(parents=True, exist_ok=True)
    for stage in STAGES[:completed]:
        path = working_dir / stage.expected_file
        if stage.checkpoint_line is None:
            path.write_text(json.dumps(story or make_story_document()), encoding="utf-8")
            continue
        existing = path.read_text(encoding="utf-8") if path.exists() else f"# {stage.label}\n"
        path.write_text(f"{existing}\nnotes\n{stage.checkpoint_line}\n", encoding="utf-8")


Action = Callable[[str, Path, Path], None]


class FakeRunner(AgentRunner):
    """Runs a Python callable in place of the agent."""

    def __init__(
        self,
        action: Action | None = None,
        exit_code: int | None = 0,
        stderr: str = "",
        stdout: str = "",
    ) -> None:
        self.action = action
        self.exit_code = exit_code
        self.stderr = stderr
        self.stdout = stdout
        self.calls: list[tuple[str, Path, Path]] = []

    async def run(self, prompt: str, working_dir: Path, cwd: Path) -> AgentOutcome:
        self.calls.append((prompt, working_dir, cwd))
        if self.action is not None:
            self.action(prompt, working_dir, cwd)
        return AgentOutcome(exit_code=self.exit_code, stderr=self.stderr, stdout=self.stdout)


def writes_story(**overrides: Any) -> Action:
    """Agent action completing every stage with the prompt's generation id."""

    def action(prompt: str, working_dir: Path, cwd: Path) -> None:
        document = make_story_document(working_dir.name, **overrides)
        write_stage_files(working_dir, len(STAGES), document)

    return action


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        stories_dir=tmp_path / "stories",
        codebase_dir=tmp_path,
        poll_interval=0.01,
        agent_terminate_grace=1.0,
    )


@pytest.fixture
def catalog(settings: Settings) -> StoryCatalog:
    catalog = StoryCatalog(settings.stories_dir)
    catalog.ensure()
    return catalog

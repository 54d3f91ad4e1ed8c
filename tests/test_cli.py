"""Tests for the typer CLI."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from codestory import __version__, cli
from codestory.core.config import Settings
from codestory.core.errors import StoryLoadError
from codestory.models import Story
from codestory.pipeline import StoryGenerator
from codestory.services import StoryCatalog
from conftest import FakeRunner, make_story_document, write_stage_files, writes_story

runner = CliRunner()

STORY_ID = "5f0c7a9e-3a1b-4c2d-9e8f-0123456789ab"


@pytest.fixture
def stories_dir(tmp_path: Path) -> Path:
    return tmp_path / "stories"


@pytest.fixture
def stored_story(stories_dir: Path) -> Story:
    catalog = StoryCatalog(stories_dir)
    catalog.ensure()
    story = Story.model_validate(make_story_document(STORY_ID))
    catalog.save_story(story)
    catalog.prepend_summary(story)
    return story


def _use_agent(monkeypatch: pytest.MonkeyPatch, agent: FakeRunner, tmp_path: Path) -> None:
    """Build generators with a fake agent and fast polling."""

    def factory(catalog: StoryCatalog, settings: Settings, **kwargs: Any) -> StoryGenerator:
        settings = settings.model_copy(update={"poll_interval": 0.01, "codebase_dir": tmp_path})
        return StoryGenerator(catalog, agent, settings=settings, **kwargs)

    monkeypatch.setattr(cli, "StoryGenerator", factory)


def invoke(stories_dir: Path, *args: str, **kwargs: Any):
    return runner.invoke(cli.app, ["--stories-dir", str(stories_dir), *args], **kwargs)


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(cli.app, ["version"])

        assert result.exit_code == 0
        assert f"codestory v{__version__}" in result.stdout


class TestGenerate:
    """codestory generate."""

    def test_success(self, monkeypatch: pytest.MonkeyPatch, stories_dir: Path, tmp_path: Path) -> None:
        agent = FakeRunner(writes_story(title="Routing explained"))
        _use_agent(monkeypatch, agent, tmp_path)

        result = invoke(stories_dir, "generate", "How does routing work?")

        assert result.exit_code == 0, result.stdout
        assert "Story generated" in result.stdout
        assert "Routing explained" in result.stdout
        manifest = StoryCatalog(stories_dir).list_stories()
        assert [s.title for s in manifest.stories] == ["Routing explained"]
        assert "How does routing work?" in agent.calls[0][0]

    def test_failure_reports_diagnostics(
        self, monkeypatch: pytest.MonkeyPatch, stories_dir: Path, tmp_path: Path
    ) -> None:
        def partial(prompt: str, working_dir: Path, cwd: Path) -> None:
            write_stage_files(working_dir, 2)

        _use_agent(monkeypatch, FakeRunner(partial, exit_code=3, stderr="rate limited"), tmp_path)

        result = invoke(stories_dir, "generate", "q")

        assert result.exit_code == 1
        assert "Generation failed" in result.stdout
        assert "artifact_missing" in result.stdout
        assert "Agent exit code: 3" in result.stdout
        assert "rate limited" in result.stdout
        (kept,) = StoryCatalog(stories_dir).pending_generations()
        assert (kept / "narrative_outline.md").is_file()


class TestCatalogCommands:
    """list, show, progress and reindex."""

    def test_list_empty(self, stories_dir: Path) -> None:
        result = invoke(stories_dir, "list")

        assert result.exit_code == 0
        assert "No stories yet" in result.stdout

    def test_list(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "list")

        assert result.exit_code == 0
        assert STORY_ID in result.stdout

    def test_show(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "show", STORY_ID)

        assert result.exit_code == 0
        assert "How requests are routed" in result.stdout
        assert "Routing is a linear scan" in result.stdout

    def test_show_one_chapter(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "show", STORY_ID, "--chapter", "2")

        assert result.exit_code == 0
        assert "src/router.py" in result.stdout
        assert "Routing is a linear scan" not in result.stdout

    def test_show_chapter_out_of_range(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "show", STORY_ID, "-c", "7")

        assert result.exit_code == 1
        assert "out of range" in result.stdout

    def test_show_interactive(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "show", STORY_ID, "-i", input="n\nq\n")

        assert result.exit_code == 0
        assert "(2/3)" in result.stdout

    def test_show_missing(self, stories_dir: Path) -> None:
        result = invoke(stories_dir, "show", STORY_ID)

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_view_local_story(self, stories_dir: Path, stored_story: Story) -> None:
        result = invoke(stories_dir, "view", STORY_ID)

        assert result.exit_code == 0
        assert "How requests are routed" in result.stdout

    def test_view_needs_a_source(self, stories_dir: Path) -> None:
        result = invoke(stories_dir, "view")

        assert result.exit_code == 1
        assert "Nothing to view" in result.stdout

    def test_view_failure_offers_retry(
        self, stories_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def fail(settings: Settings, url: str) -> Story:
            raise StoryLoadError(f"Failed to fetch story: 404 at {url}")

        monkeypatch.setattr(cli, "_fetch_story", fail)

        result = invoke(stories_dir, "view", "--url", "https://example.com/s.json")

        assert result.exit_code == 1
        assert "Failed to fetch story" in result.stdout
        assert "codestory list" in result.stdout
        assert "Chapter" not in result.stdout

    def test_progress_json(self, stories_dir: Path) -> None:
        generation_id = "11111111-2222-4333-8444-555555555555"
        write_stage_files(stories_dir / ".tmp" / generation_id, 3)

        result = invoke(stories_dir, "progress", generation_id, "--json")

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["stage"] == 3
        assert report["label"] == "Identifying code snippets"
        assert report["files"]["narrative_outline.md"]["hasExpectedToken"] is True

    def test_progress_table(self, stories_dir: Path) -> None:
        generation_id = "11111111-2222-4333-8444-555555555555"
        write_stage_files(stories_dir / ".tmp" / generation_id, 1)

        result = invoke(stories_dir, "progress", generation_id)

        assert result.exit_code == 0
        assert "Stage 1/5 (20%)" in result.stdout

    def test_progress_invalid_id(self, stories_dir: Path) -> None:
        result = invoke(stories_dir, "progress", "nope")

        assert result.exit_code == 1
        assert "Invalid generation ID" in result.stdout

    def test_reindex(self, stories_dir: Path, stored_story: Story) -> None:
        (stories_dir / "manifest.json").unlink()

        result = invoke(stories_dir, "reindex")

        assert result.exit_code == 0
        assert "1 stories" in result.stdout
        assert [s.id for s in StoryCatalog(stories_dir).list_stories().stories] == [STORY_ID]

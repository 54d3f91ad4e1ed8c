"""Tests for the HTTP API."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from codestory.api.exceptions import status_for
from codestory.api.main import create_app
from codestory.core.config import Settings
from codestory.core.errors import (
    ArtifactInvalidError,
    CodeStoryError,
    InvalidIdentifierError,
    StoryNotFoundError,
)
from codestory.models import Story
from codestory.services import StoryCatalog
from conftest import FakeRunner, make_story_document, write_stage_files, writes_story

MISSING_ID = "00000000-0000-4000-8000-000000000000"


def _client(settings: Settings, runner: FakeRunner) -> TestClient:
    return TestClient(create_app(settings, runner=runner))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(writes_story())


@pytest.fixture
def client(settings: Settings, runner: FakeRunner) -> Iterator[TestClient]:
    with _client(settings, runner) as client:
        yield client


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["catalog"] == "healthy"
        assert data["generations"] == 0
        assert data["status"] in ("healthy", "degraded")

    def test_probes(self, client: TestClient) -> None:
        assert client.get("/api/ready").json() == {"ready": True}
        assert client.get("/api/live").json() == {"alive": True}


class TestGenerate:
    """POST /api/generate and the progress endpoint."""

    def test_generation_succeeds(self, client: TestClient, runner: FakeRunner, settings: Settings) -> None:
        response = client.post("/api/generate", json={"query": "How does routing work?"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "started"
        generation_id = body["generationId"]

        # Background tasks finish before the test client returns
        progress = client.get(f"/api/generate/{generation_id}/progress").json()
        assert progress["state"] == "succeeded"
        assert progress["stage"] == 5
        assert progress["percent"] == 100
        assert progress["label"] == "Complete"
        assert progress["storyId"] == generation_id
        assert progress["error"] is None

        prompt, working_dir, cwd = runner.calls[0]
        assert "How does routing work?" in prompt
        assert cwd == settings.codebase_dir

        story = client.get(f"/api/stories/{generation_id}").json()
        assert story["id"] == generation_id
        assert story["commitHash"]

    def test_empty_query_rejected(self, client: TestClient) -> None:
        response = client.post("/api/generate", json={"query": ""})

        assert response.status_code == 422

    def test_failed_generation_reports_error(self, settings: Settings) -> None:
        with _client(settings, FakeRunner(exit_code=1, stderr="agent crashed")) as client:
            generation_id = client.post("/api/generate", json={"query": "q"}).json()["generationId"]
            progress = client.get(f"/api/generate/{generation_id}/progress").json()

        assert progress["state"] == "failed"
        assert progress["storyId"] is None
        assert progress["error"]["details"]["reason"] == "artifact_missing"
        assert progress["error"]["details"]["stderr"] == "agent crashed"
        assert progress["error"]["details"]["exit_code"] == 1

    def test_unknown_generation(self, client: TestClient) -> None:
        progress = client.get(f"/api/generate/{MISSING_ID}/progress").json()

        assert progress == {
            "generationId": MISSING_ID,
            "state": "unknown",
            "stage": 0,
            "percent": 0,
            "label": "",
            "files": {},
            "storyId": None,
            "error": None,
        }

    def test_malformed_generation_id(self, client: TestClient) -> None:
        progress = client.get("/api/generate/not-an-id/progress").json()

        assert progress["state"] == "unknown"
        assert progress["stage"] == 0

    def test_progress_from_working_dir(self, client: TestClient, settings: Settings) -> None:
        # A generation started by another process is only visible on disk
        working_dir = Path(settings.stories_dir) / ".tmp" / MISSING_ID
        write_stage_files(working_dir, 2)

        progress = client.get(f"/api/generate/{MISSING_ID}/progress").json()

        assert progress["state"] == "running"
        assert progress["stage"] == 2
        assert progress["label"] == "Reviewing flow"
        assert progress["files"]["narrative_outline.md"]["checkpoints"] == {
            "STAGE_2_COMPLETE": True,
            "STAGE_3_COMPLETE": False,
        }


class TestEvents:
    def test_stream_ends_after_success(self, client: TestClient) -> None:
        generation_id = client.post("/api/generate", json={"query": "q"}).json()["generationId"]

        response = client.get(f"/api/generate/{generation_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [
            json.loads(line.removeprefix("data: "))
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert events[-1]["state"] == "succeeded"
        assert events[-1]["stage"] == 5

    def test_stream_ends_for_unknown_generation(self, client: TestClient) -> None:
        response = client.get(f"/api/generate/{MISSING_ID}/events")

        assert response.status_code == 200
        assert '"state": "unknown"' in response.text


class TestStories:
    """GET /api/stories."""

    def test_empty_manifest(self, client: TestClient) -> None:
        assert client.get("/api/stories").json() == {"stories": []}

    def test_manifest_lists_newest_first(self, client: TestClient, settings: Settings) -> None:
        catalog = StoryCatalog(settings.stories_dir)
        first = Story.model_validate(make_story_document(title="First"))
        second = Story.model_validate(make_story_document(title="Second"))
        for story in (first, second):
            catalog.save_story(story)
            catalog.prepend_summary(story)

        stories = client.get("/api/stories").json()["stories"]

        assert [s["title"] for s in stories] == ["Second", "First"]
        assert set(stories[0]) == {"id", "title", "commitHash", "createdAt"}

    def test_get_story(self, client: TestClient, settings: Settings) -> None:
        story = Story.model_validate(make_story_document())
        StoryCatalog(settings.stories_dir).save_story(story)

        response = client.get(f"/api/stories/{story.id}")

        assert response.status_code == 200
        assert response.json() == story.to_document()

    def test_missing_story(self, client: TestClient) -> None:
        response = client.get(f"/api/stories/{MISSING_ID}")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_malformed_story_id(self, client: TestClient) -> None:
        assert client.get("/api/stories/not-a-uuid").status_code == 404

    def test_corrupt_story(self, client: TestClient, settings: Settings) -> None:
        catalog = StoryCatalog(settings.stories_dir)
        catalog.story_path(MISSING_ID).write_text("{")

        response = client.get(f"/api/stories/{MISSING_ID}")

        assert response.status_code == 500
        assert response.json()["code"] == "story_corrupt"


class TestErrorMapping:
    """Domain errors map onto HTTP statuses."""

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (StoryNotFoundError(MISSING_ID), 404),
            (ArtifactInvalidError("chapters.0.title", "field required"), 422),
            (InvalidIdentifierError("not-a-uuid"), 422),
            (CodeStoryError("disk full", code="internal_error"), 500),
        ],
    )
    def test_status_for(self, error: CodeStoryError, status: int) -> None:
        assert status_for(error) == status


class TestGit:
    def test_commit_hash(self, client: TestClient) -> None:
        response = client.get("/api/git/commit-hash")

        assert response.status_code == 200
        commit = response.json()["commitHash"]
        assert commit == "unknown" or len(commit) == 40

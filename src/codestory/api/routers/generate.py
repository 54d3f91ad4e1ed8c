"""Generation router.

Starts story generations in the background and reports their progress.
Progress is always re-probed from the generation's working directory; the
registry only contributes the lifecycle state and the outcome.
"""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Request, status
from pydantic import BaseModel, ConfigDict, Field

from codestory.api.deps import Catalog, Generator, Registry
from codestory.core.errors import CodeStoryError
from codestory.models import is_valid_story_id
from codestory.pipeline import (
    STAGES,
    GenerationRegistry,
    GenerationState,
    ProgressReport,
    StoryGenerator,
    probe,
)
from codestory.services import StoryCatalog

logger = logging.getLogger(__name__)

router = APIRouter()

STAGE_LABELS = tuple(stage.label for stage in STAGES)


# =============================================================================
# Schemas
# =============================================================================


class GenerateRequest(BaseModel):
    """Request to start a generation."""

    query: str = Field(..., min_length=1, description="Question the story should answer")
    repo: str | None = Field(default=None, description="GitHub user/repo or URL to narrate")


class GenerateResponse(BaseModel):
    """Accepted generation."""

    model_config = ConfigDict(populate_by_name=True)

    generation_id: str = Field(alias="generationId")
    status: str = "started"


class ProgressResponse(BaseModel):
    """Generation progress."""

    model_config = ConfigDict(populate_by_name=True)

    generation_id: str = Field(alias="generationId")
    state: str
    stage: int
    percent: int
    label: str
    files: dict[str, Any]
    story_id: str | None = Field(default=None, alias="storyId")
    error: dict[str, Any] | None = None


# =============================================================================
# Background Task: Generation
# =============================================================================


async def run_generation(
    request: Request,
    generator: StoryGenerator,
    generation_id: str,
    query: str,
    repo: str | None,
) -> None:
    """Run one generation; its outcome is recorded in the registry."""
    tasks: set[asyncio.Task] = request.app.state.tasks
    task = asyncio.current_task()
    if task is not None:
        tasks.add(task)
    try:
        result = await generator.generate(query, repo, generation_id=generation_id)
        logger.info(f"Generation {generation_id} stored story {result.story.id}")
    except CodeStoryError as e:
        logger.warning(f"Generation {generation_id} failed ({e.code}): {e.message}")
    except Exception:
        logger.exception(f"Generation {generation_id} crashed")
    finally:
        if task is not None:
            tasks.discard(task)


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "",
    response_model=GenerateResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_generation(
    body: GenerateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    generator: Generator,
) -> GenerateResponse:
    """Start a generation.

    Returns immediately with the generation id; poll
    ``/api/generate/{generationId}/progress`` for progress.
    """
    generation_id = generator.new_generation_id()
    background_tasks.add_task(
        run_generation,
        request,
        generator,
        generation_id,
        body.query,
        body.repo,
    )
    logger.info(f"Accepted generation {generation_id}")
    return GenerateResponse(generation_id=generation_id)


@router.get(
    "/{generation_id}/progress",
    response_model=ProgressResponse,
    response_model_by_alias=True,
)
async def get_progress(
    generation_id: str,
    catalog: Catalog,
    registry: Registry,
) -> ProgressResponse:
    """Report a generation's stage and file checkpoints.

    Unknown ids report stage 0 with no files and state ``unknown``.
    """
    return build_progress(generation_id, catalog, registry)


def build_progress(generation_id: str, catalog: StoryCatalog, registry: GenerationRegistry) -> ProgressResponse:
    """Combine the registry record with a fresh probe of the working directory."""
    context = registry.get(generation_id)
    if is_valid_story_id(generation_id):
        report = probe(catalog.tmp_dir / generation_id)
    else:
        report = ProgressReport(stage=0, total=len(STAGES), labels=STAGE_LABELS)

    if context is not None and context.state == GenerationState.SUCCEEDED:
        # Working directory is gone once the story is ingested
        report = ProgressReport(stage=len(STAGES), total=len(STAGES), labels=STAGE_LABELS)

    if context is not None:
        state = context.state.value
    elif report.files:
        state = "running"
    else:
        state = "unknown"

    return ProgressResponse(
        generation_id=generation_id,
        state=state,
        stage=report.stage,
        percent=report.percent,
        label=report.label if state != "unknown" else "",
        files={name: file_status.to_dict() for name, file_status in report.files.items()},
        story_id=context.story_id if context else None,
        error=context.error if context else None,
    )

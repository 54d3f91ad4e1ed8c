"""Story Generation Orchestrator.

Runs one generation end to end:
- Allocates a generation id and an isolated working directory
- Builds the prompt and starts the agent with the directory as its only
  writable scope
- Polls the progress prober on a fixed cadence and emits progress events
- Ingests the final artifact once the agent exits

State per generation: CREATED -> RUNNING -> SUCCEEDED | FAILED, or
CANCELLED when the awaiting task is cancelled. On failure the working
directory is kept for inspection; on cancellation it is removed.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from codestory.agents import AgentOutcome, AgentRunner, create_agent_runner
from codestory.core.config import Settings, get_settings
from codestory.core.errors import AgentSpawnError, CodeStoryError, GenerationFailedError
from codestory.models import Story
from codestory.services.catalog import StoryCatalog
from codestory.services.repository import ClonedRepository, cloned_repository, get_commit_hash

from .context import GenerationContext, GenerationRegistry, GenerationState
from .ingest import ArtifactIngestor
from .progress import ProgressReport, probe
from .prompt import build_prompt
from .stages import STAGES, Stage, final_artifact_name

logger = logging.getLogger("codestory.pipeline")

Cloner = Callable[..., AbstractAsyncContextManager[ClonedRepository]]


# =============================================================================
# Pipeline Events
# =============================================================================


class PipelineEventType(str, Enum):
    """Types of pipeline events for progress tracking."""

    STARTED = "started"
    STAGE_PROGRESS = "stage_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PipelineEvent:
    """Event emitted during a generation."""

    type: PipelineEventType
    generation_id: str
    stage: int = 0
    label: str = ""
    progress_percent: int = 0
    message: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "type": self.type.value,
            "generation_id": self.generation_id,
            "stage": self.stage,
            "label": self.label,
            "timestamp": self.timestamp,
            "progress_percent": self.progress_percent,
            "message": self.message,
            "data": self.data,
            "error": self.error,
        }


@dataclass
class GenerationResult:
    """Outcome of a successful generation."""

    generation_id: str
    story: Story
    story_path: Path
    exit_code: int | None = None


# =============================================================================
# Orchestrator
# =============================================================================


class StoryGenerator:
    """Orchestrates story generations against one catalog.

    Example:
        generator = StoryGenerator(StoryCatalog("stories"))
        result = await generator.generate(
            "How does request routing work?",
            on_event=lambda e: print(f"{e.label} ({e.progress_percent}%)"),
        )
        print(result.story.title)
    """

    def __init__(
        self,
        catalog: StoryCatalog,
        runner: AgentRunner | None = None,
        *,
        settings: Settings | None = None,
        registry: GenerationRegistry | None = None,
        cloner: Cloner | None = None,
        guidance: str | None = None,
        stages: tuple[Stage, ...] = STAGES,
    ) -> None:
        """Initialize the generator.

        Args:
            catalog: Catalog that receives stories and hosts working directories
            runner: Agent runner (built from settings if not provided)
            settings: Settings (cached settings if not provided)
            registry: Shared generation registry (a new one if not provided)
            cloner: Async context manager factory for external repositories
            guidance: Authoring guidance override for the prompt
            stages: Stage registry
        """
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.runner = runner if runner is not None else create_agent_runner(self.settings)
        # An empty registry is falsy; compare with None
        self.registry = registry if registry is not None else GenerationRegistry()
        self.cloner = cloner if cloner is not None else cloned_repository
        self.guidance = guidance if guidance is not None else self.settings.load_guidance()
        self.stages = stages
        self.ingestor = ArtifactIngestor(catalog)

    @staticmethod
    def new_generation_id() -> str:
        return str(uuid.uuid4())

    def progress(self, generation_id: str) -> ProgressReport:
        """Probe a generation's working directory."""
        return probe(self.catalog.tmp_dir / generation_id, self.stages)

    def _emit(
        self,
        on_event: Callable[[PipelineEvent], None] | None,
        event: PipelineEvent,
    ) -> None:
        """Emit event to callback if configured."""
        if on_event:
            try:
                on_event(event)
            except Exception as e:
                logger.warning(f"Event callback error: {e}")

    async def _poll_progress(
        self,
        context: GenerationContext,
        on_event: Callable[[PipelineEvent], None] | None,
    ) -> None:
        """Report stage changes until cancelled."""
        last_stage = -1
        while True:
            try:
                report = probe(context.working_dir, self.stages)
            except Exception as e:
                logger.debug(f"Progress probe failed, treating as no progress: {e}")
                report = None

            if report is not None and report.stage != last_stage:
                last_stage = report.stage
                logger.debug(f"Generation {context.generation_id}: stage {report.stage}/{report.total}")
                self._emit(
                    on_event,
                    PipelineEvent(
                        type=PipelineEventType.STAGE_PROGRESS,
                        generation_id=context.generation_id,
                        stage=report.stage,
                        label=report.label,
                        progress_percent=report.percent,
                        message=f"{report.label} ({report.percent}%)",
                        data=report.to_dict(),
                    ),
                )
            await asyncio.sleep(self.settings.poll_interval)

    @asynccontextmanager
    async def _source_tree(
        self,
        repo: str | None,
        source_dir: Path | None,
    ) -> AsyncIterator[tuple[str | None, Path]]:
        if repo:
            async with self.cloner(
                repo,
                timeout=self.settings.clone_timeout,
                clone_base=self.settings.github_clone_base,
            ) as clone:
                yield clone.repo_id, clone.path
        else:
            yield None, Path(source_dir or self.settings.codebase_dir)

    async def generate(
        self,
        query: str,
        repo: str | None = None,
        *,
        source_dir: Path | None = None,
        generation_id: str | None = None,
        on_event: Callable[[PipelineEvent], None] | None = None,
    ) -> GenerationResult:
        """Generate a story for ``query``.

        Args:
            query: The user's question
            repo: Optional GitHub ``user/repo`` or URL to clone and narrate
            source_dir: Local source tree when ``repo`` is not given
            generation_id: Pre-allocated id (e.g. returned early by the API)
            on_event: Progress callback

        Returns:
            GenerationResult with the stored story

        Raises:
            GenerationFailedError: If the agent could not start or its
                artifact is missing or invalid (working directory kept)
            ExternalResourceError: If the repository could not be cloned
            asyncio.CancelledError: On cancellation (working directory removed)
        """
        generation_id = generation_id or self.new_generation_id()
        self.catalog.ensure()
        context = GenerationContext(
            generation_id=generation_id,
            working_dir=self.catalog.working_dir(generation_id),
            query=query,
        )
        self.registry.add(context)

        self._emit(
            on_event,
            PipelineEvent(
                type=PipelineEventType.STARTED,
                generation_id=generation_id,
                label=self.stages[0].label,
                message="Starting story generation",
                data={"query": query, "repo": repo},
            ),
        )

        try:
            async with self._source_tree(repo, source_dir) as (repo_id, cwd):
                context.repo = repo_id
                context.source_dir = cwd
                return await self._run(context, on_event)
        except asyncio.CancelledError:
            self._cancel(context, on_event)
            raise
        except CodeStoryError as e:
            if not context.state.is_terminal:
                context.error = e.to_dict()
                context.advance(GenerationState.FAILED)
                self._emit(
                    on_event,
                    PipelineEvent(
                        type=PipelineEventType.FAILED,
                        generation_id=generation_id,
                        message="Generation failed",
                        error=e.message,
                    ),
                )
            raise
        except Exception as e:
            logger.exception(
                f"Generation {generation_id} crashed; intermediate files kept in {context.working_dir}"
            )
            if not context.state.is_terminal:
                context.error = {
                    "error": str(e),
                    "code": "internal_error",
                    "details": {"type": type(e).__name__, "working_dir": str(context.working_dir)},
                }
                context.advance(GenerationState.FAILED)
                self._emit(
                    on_event,
                    PipelineEvent(
                        type=PipelineEventType.FAILED,
                        generation_id=generation_id,
                        message="Generation failed",
                        error=str(e),
                    ),
                )
            raise

    async def _run(
        self,
        context: GenerationContext,
        on_event: Callable[[PipelineEvent], None] | None,
    ) -> GenerationResult:
        context.working_dir.mkdir(parents=True, exist_ok=True)
        context.source_commit = await get_commit_hash(context.source_dir)

        prompt = build_prompt(
            context.query,
            context.working_dir,
            context.source_commit,
            context.generation_id,
            context.repo,
            guidance=self.guidance,
            stages=self.stages,
        )
        logger.info(
            f"Generation {context.generation_id}: query={context.query!r} "
            f"repo={context.repo} commit={context.source_commit[:7]}"
        )

        context.advance(GenerationState.RUNNING)
        poller = asyncio.create_task(self._poll_progress(context, on_event))
        try:
            outcome = await self.runner.run(prompt, context.working_dir, context.source_dir)
        except AgentSpawnError as e:
            raise self._fail(context, e, AgentOutcome(exit_code=None), on_event) from e
        finally:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass

        try:
            story = await asyncio.to_thread(
                self.ingestor.ingest,
                context.working_dir,
                final_artifact_name(self.stages),
            )
        except CodeStoryError as e:
            raise self._fail(context, e, outcome, on_event) from e

        context.story_id = story.id
        context.advance(GenerationState.SUCCEEDED)
        self._emit(
            on_event,
            PipelineEvent(
                type=PipelineEventType.COMPLETED,
                generation_id=context.generation_id,
                stage=len(self.stages),
                label="Complete",
                progress_percent=100,
                message=f"Story generated: {story.title}",
                data={"story_id": story.id, "chapters": len(story.chapters)},
            ),
        )
        return GenerationResult(
            generation_id=context.generation_id,
            story=story,
            story_path=self.catalog.story_path(story.id),
            exit_code=outcome.exit_code,
        )

    def _fail(
        self,
        context: GenerationContext,
        cause: CodeStoryError,
        outcome: AgentOutcome,
        on_event: Callable[[PipelineEvent], None] | None,
    ) -> GenerationFailedError:
        stderr = outcome.stderr_excerpt(self.settings.stderr_excerpt_chars)
        error = GenerationFailedError(
            cause,
            working_dir=context.working_dir,
            stderr=stderr,
            exit_code=outcome.exit_code,
        )
        context.error = error.to_dict()
        context.advance(GenerationState.FAILED)
        logger.error(
            f"Generation {context.generation_id} failed ({cause.code}): {cause.message}. "
            f"Intermediate files kept in {context.working_dir}"
        )
        self._emit(
            on_event,
            PipelineEvent(
                type=PipelineEventType.FAILED,
                generation_id=context.generation_id,
                message="Generation failed",
                error=cause.message,
                data={"reason": cause.code, "working_dir": str(context.working_dir), "stderr": stderr},
            ),
        )
        return error

    def _cancel(
        self,
        context: GenerationContext,
        on_event: Callable[[PipelineEvent], None] | None,
    ) -> None:
        logger.info(f"Generation {context.generation_id} cancelled; removing {context.working_dir}")
        shutil.rmtree(context.working_dir, ignore_errors=True)
        if not context.state.is_terminal:
            context.advance(GenerationState.CANCELLED)
        self._emit(
            on_event,
            PipelineEvent(
                type=PipelineEventType.CANCELLED,
                generation_id=context.generation_id,
                message="Generation cancelled",
            ),
        )


# =============================================================================
# Convenience Function
# =============================================================================


async def generate_story(
    query: str,
    repo: str | None = None,
    settings: Settings | None = None,
) -> GenerationResult:
    """Run one generation against the configured catalog.

    Convenience function for scripts; logs progress instead of taking a
    callback.
    """
    settings = settings or get_settings()
    generator = StoryGenerator(StoryCatalog(settings.stories_dir), settings=settings)

    def log_event(event: PipelineEvent) -> None:
        logger.info(f"[{event.type.value}] {event.message}")

    return await generator.generate(query, repo, on_event=log_event)

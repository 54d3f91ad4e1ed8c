"""Code Story Pipeline Module.

Staged generation protocol and its orchestration:

1. Exploration    -> exploration_notes.md   (STAGE_1_COMPLETE)
2. Outline        -> narrative_outline.md   (STAGE_2_COMPLETE)
3. Review         -> narrative_outline.md   (STAGE_3_COMPLETE)
4. Snippets       -> snippets_mapping.md    (STAGE_4_COMPLETE)
5. Authoring      -> story.json

Usage:
    from codestory.pipeline import StoryGenerator

    generator = StoryGenerator(StoryCatalog("stories"))
    result = await generator.generate("How does the cache expire entries?")
"""

from .context import GenerationContext, GenerationRegistry, GenerationState
from .ingest import ArtifactIngestor, load_artifact, validate_artifact
from .orchestrator import (
    GenerationResult,
    PipelineEvent,
    PipelineEventType,
    StoryGenerator,
    generate_story,
)
from .progress import FileStatus, ProgressReport, probe
from .prompt import build_prompt
from .stages import STAGES, Stage, final_artifact_name, stage_files

__all__ = [
    # Stages
    "STAGES",
    "Stage",
    "final_artifact_name",
    "stage_files",
    # Progress
    "FileStatus",
    "ProgressReport",
    "probe",
    # Prompt
    "build_prompt",
    # Generation
    "GenerationContext",
    "GenerationRegistry",
    "GenerationState",
    "GenerationResult",
    "StoryGenerator",
    "PipelineEvent",
    "PipelineEventType",
    "generate_story",
    # Ingestion
    "ArtifactIngestor",
    "load_artifact",
    "validate_artifact",
]

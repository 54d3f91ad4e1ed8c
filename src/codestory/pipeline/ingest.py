"""Artifact ingestion.

Turns the agent's final file into a catalog entry. All validation happens
before the first catalog write, so a rejected artifact never leaves a trace
in the catalog. The three writes that follow (story file, manifest,
working directory removal) are not transactional; a crash between them is
repaired by ``StoryCatalog.rebuild_manifest``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from codestory.core.errors import ArtifactMalformedError, ArtifactMissingError
from codestory.models import Story, validate_story_document
from codestory.services.catalog import StoryCatalog

from .stages import final_artifact_name

logger = logging.getLogger("codestory.pipeline.ingest")


def validate_artifact(data: object) -> Story:
    """Validate a parsed story document without touching the catalog."""
    return validate_story_document(data)


def load_artifact(path: Path) -> Story:
    """Read and validate a final artifact file.

    Raises:
        ArtifactMissingError: If the file does not exist
        ArtifactMalformedError: If it is not valid JSON
        ArtifactInvalidError: If it violates the story schema
        InvalidIdentifierError: If its id is not a canonical UUID
    """
    if not path.is_file():
        raise ArtifactMissingError(path)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ArtifactMalformedError(
            f"{path.name} is not valid JSON: {e}",
            details={"path": str(path)},
        ) from e

    story = validate_artifact(data)

    if story.chapters[0].snippets:
        logger.warning(f"Story {story.id}: first chapter has snippets; expected a prose-only overview")
    if len(story.chapters) > 1 and story.chapters[-1].snippets:
        logger.warning(f"Story {story.id}: last chapter has snippets; expected a prose-only summary")

    return story


class ArtifactIngestor:
    """Validates the agent's artifact and commits it to the catalog."""

    def __init__(self, catalog: StoryCatalog) -> None:
        self.catalog = catalog

    def ingest(self, working_dir: Path, final_file: str | None = None) -> Story:
        """Validate, persist and clean up.

        Args:
            working_dir: Generation working directory
            final_file: Artifact file name; defaults to the last stage's file

        Returns:
            The stored story (id normalized to lower case)
        """
        path = working_dir / (final_file or final_artifact_name())
        story = load_artifact(path)

        normalized = story.id.lower()
        if normalized != story.id:
            story = story.model_copy(update={"id": normalized})

        story_path = self.catalog.save_story(story)
        self.catalog.prepend_summary(story)
        self.catalog.discard_working_dir(working_dir)

        logger.info(f"Ingested story {story.id} ({story.title!r}) into {story_path}")
        return story

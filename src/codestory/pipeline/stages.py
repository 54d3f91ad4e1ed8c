"""Stage registry for the story generation protocol.

The agent reports progress only through files it writes into its working
directory. Each stage names the file it writes and the literal checkpoint
token it appends once the stage is done. The prompt builder and the
progress prober both read this registry, so file names and tokens cannot
drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Stage:
    """One phase of the generation pipeline.

    Attributes:
        expected_file: File name relative to the working directory
        checkpoint_token: Literal string marking completion, or None when
            the file's existence is enough
        label: Human-readable progress label
    """

    expected_file: str
    checkpoint_token: str | None
    label: str

    @property
    def checkpoint_line(self) -> str | None:
        """The exact line the agent appends to signal completion."""
        if self.checkpoint_token is None:
            return None
        return f"<!-- CHECKPOINT: {self.checkpoint_token} -->"


EXPLORATION_NOTES = "exploration_notes.md"
NARRATIVE_OUTLINE = "narrative_outline.md"
SNIPPETS_MAPPING = "snippets_mapping.md"
FINAL_ARTIFACT = "story.json"

STAGES: tuple[Stage, ...] = (
    Stage(EXPLORATION_NOTES, "STAGE_1_COMPLETE", "Exploring codebase"),
    Stage(NARRATIVE_OUTLINE, "STAGE_2_COMPLETE", "Creating narrative outline"),
    Stage(NARRATIVE_OUTLINE, "STAGE_3_COMPLETE", "Reviewing flow"),
    Stage(SNIPPETS_MAPPING, "STAGE_4_COMPLETE", "Identifying code snippets"),
    Stage(FINAL_ARTIFACT, None, "Crafting explanations"),
)


def final_artifact_name(stages: tuple[Stage, ...] = STAGES) -> str:
    """File whose existence completes the whole pipeline."""
    return stages[-1].expected_file


def stage_files(stages: tuple[Stage, ...] = STAGES) -> list[str]:
    """Distinct expected files in first-seen order."""
    seen: list[str] = []
    for stage in stages:
        if stage.expected_file not in seen:
            seen.append(stage.expected_file)
    return seen

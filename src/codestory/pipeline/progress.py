"""Progress prober.

Infers how far the agent has progressed by reading the files it has written
so far. Probing never writes and never raises for filesystem reasons: a
missing directory, a missing file, an unreadable file or a half-written
file all simply mean "not there yet". It is safe to call at any rate while
the agent is still writing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .stages import STAGES, Stage

logger = logging.getLogger("codestory.pipeline.progress")


@dataclass(frozen=True)
class FileStatus:
    """Observed state of one expected file.

    ``checkpoints`` maps every token a stage expects in this file to
    whether it is present, so callers can tell an outline being drafted
    from one being reviewed even though both stages write the same path.
    """

    exists: bool
    has_expected_token: bool
    checkpoints: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exists": self.exists,
            "hasExpectedToken": self.has_expected_token,
            "checkpoints": dict(self.checkpoints),
        }


@dataclass(frozen=True)
class ProgressReport:
    """Result of one probe."""

    stage: int
    total: int
    files: dict[str, FileStatus] = field(default_factory=dict)
    labels: tuple[str, ...] = ()

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        return round(self.stage / self.total * 100)

    @property
    def is_complete(self) -> bool:
        return self.stage >= self.total

    @property
    def label(self) -> str:
        """Label of the stage currently being worked on."""
        if self.is_complete or self.stage >= len(self.labels):
            return "Complete"
        return self.labels[self.stage]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "files": {name: status.to_dict() for name, status in self.files.items()},
        }


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
        return None


def probe(working_dir: Path | str, stages: tuple[Stage, ...] = STAGES) -> ProgressReport:
    """Report how many stages are complete in ``working_dir``.

    Stages are scanned in order and the scan stops at the first stage whose
    file is missing or whose checkpoint token is absent, so an agent that
    skips ahead is never reported past its earliest gap.

    Args:
        working_dir: Generation working directory
        stages: Stage registry to check against

    Returns:
        ProgressReport with the stage index in ``[0, len(stages)]`` and a
        per-file status map (empty when the directory does not exist)
    """
    working_dir = Path(working_dir)
    labels = tuple(stage.label for stage in stages)

    try:
        if not working_dir.is_dir():
            return ProgressReport(stage=0, total=len(stages), labels=labels)
    except OSError:
        return ProgressReport(stage=0, total=len(stages), labels=labels)

    contents: dict[str, str | None] = {}
    exists: dict[str, bool] = {}
    for stage in stages:
        name = stage.expected_file
        if name in exists:
            continue
        path = working_dir / name
        try:
            exists[name] = path.is_file()
        except OSError:
            exists[name] = False
        contents[name] = _read_text(path) if exists[name] else None

    def has_token(name: str, token: str) -> bool:
        text = contents.get(name)
        return text is not None and token in text

    reached = 0
    for stage in stages:
        if not exists[stage.expected_file]:
            break
        if stage.checkpoint_token and not has_token(stage.expected_file, stage.checkpoint_token):
            break
        reached += 1

    files: dict[str, FileStatus] = {}
    for name, present in exists.items():
        file_stages = [stage for stage in stages if stage.expected_file == name]
        checkpoints = {
            stage.checkpoint_token: has_token(name, stage.checkpoint_token)
            for stage in file_stages
            if stage.checkpoint_token
        }
        last_token = file_stages[-1].checkpoint_token
        expected = present if last_token is None else checkpoints[last_token]
        files[name] = FileStatus(exists=present, has_expected_token=expected, checkpoints=checkpoints)

    return ProgressReport(stage=reached, total=len(stages), files=files, labels=labels)

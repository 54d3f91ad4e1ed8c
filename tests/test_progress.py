"""Tests for the stage registry and the progress prober."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from codestory.pipeline import STAGES, Stage, final_artifact_name, probe, stage_files
from conftest import write_stage_files


class TestStageRegistry:
    """The registry is the single source of file names and tokens."""

    def test_five_stages_in_protocol_order(self) -> None:
        assert [(s.expected_file, s.checkpoint_token) for s in STAGES] == [
            ("exploration_notes.md", "STAGE_1_COMPLETE"),
            ("narrative_outline.md", "STAGE_2_COMPLETE"),
            ("narrative_outline.md", "STAGE_3_COMPLETE"),
            ("snippets_mapping.md", "STAGE_4_COMPLETE"),
            ("story.json", None),
        ]

    def test_checkpoint_line_format(self) -> None:
        assert STAGES[0].checkpoint_line == "<!-- CHECKPOINT: STAGE_1_COMPLETE -->"
        assert STAGES[-1].checkpoint_line is None

    def test_final_artifact_and_distinct_files(self) -> None:
        assert final_artifact_name() == "story.json"
        assert stage_files() == [
            "exploration_notes.md",
            "narrative_outline.md",
            "snippets_mapping.md",
            "story.json",
        ]


class TestProbe:
    """Progress is inferred from files only."""

    def test_missing_directory_is_stage_zero(self, tmp_path: Path) -> None:
        report = probe(tmp_path / "does-not-exist")

        assert report.stage == 0
        assert report.files == {}
        assert report.percent == 0
        assert report.label == "Exploring codebase"

    def test_empty_directory_lists_every_file_as_missing(self, tmp_path: Path) -> None:
        report = probe(tmp_path)

        assert report.stage == 0
        assert set(report.files) == set(stage_files())
        assert not any(status.exists for status in report.files.values())

    @pytest.mark.parametrize("completed", range(len(STAGES) + 1))
    def test_conforming_agent_reaches_each_stage(self, tmp_path: Path, completed: int) -> None:
        write_stage_files(tmp_path, completed)

        report = probe(tmp_path)

        assert report.stage == completed
        assert report.percent == round(completed / len(STAGES) * 100)

    def test_complete_report(self, tmp_path: Path) -> None:
        write_stage_files(tmp_path, len(STAGES))

        report = probe(tmp_path)

        assert report.is_complete
        assert report.percent == 100
        assert report.label == "Complete"
        assert all(status.has_expected_token for status in report.files.values())

    def test_outline_without_review_token_stops_at_stage_two(self, tmp_path: Path) -> None:
        write_stage_files(tmp_path, 2)

        report = probe(tmp_path)
        outline = report.files["narrative_outline.md"]

        assert report.stage == 2
        assert report.label == "Reviewing flow"
        assert outline.checkpoints == {"STAGE_2_COMPLETE": True, "STAGE_3_COMPLETE": False}
        assert outline.has_expected_token is False

    def test_file_without_token_does_not_count(self, tmp_path: Path) -> None:
        (tmp_path / "exploration_notes.md").write_text("# Notes\nstill exploring\n")

        report = probe(tmp_path)

        assert report.stage == 0
        assert report.files["exploration_notes.md"].exists
        assert not report.files["exploration_notes.md"].has_expected_token

    def test_skipping_ahead_is_not_reported(self, tmp_path: Path) -> None:
        """A later stage's file never lifts progress past an earlier gap."""
        write_stage_files(tmp_path, len(STAGES))
        (tmp_path / "exploration_notes.md").unlink()

        report = probe(tmp_path)

        assert report.stage == 0
        assert report.files["story.json"].exists

    def test_token_match_is_a_substring_match(self, tmp_path: Path) -> None:
        (tmp_path / "exploration_notes.md").write_text("notes STAGE_1_COMPLETE trailing")

        assert probe(tmp_path).stage == 1

    def test_stage_without_token_counts_on_existence(self, tmp_path: Path) -> None:
        write_stage_files(tmp_path, 4)
        (tmp_path / "story.json").write_text("{ half written")

        assert probe(tmp_path).stage == 5

    def test_probe_does_not_modify_directory(self, tmp_path: Path) -> None:
        write_stage_files(tmp_path, 3)
        before = {p.name: (p.stat().st_mtime_ns, p.read_bytes()) for p in tmp_path.iterdir()}

        probe(tmp_path)
        probe(tmp_path)

        after = {p.name: (p.stat().st_mtime_ns, p.read_bytes()) for p in tmp_path.iterdir()}
        assert before == after

    def test_invalid_utf8_is_tolerated(self, tmp_path: Path) -> None:
        (tmp_path / "exploration_notes.md").write_bytes(b"\xff\xfe STAGE_1_COMPLETE")

        assert probe(tmp_path).stage == 1

    @pytest.mark.skipif(os.geteuid() == 0, reason="root ignores file permissions")
    def test_unreadable_file_counts_as_not_there(self, tmp_path: Path) -> None:
        notes = tmp_path / "exploration_notes.md"
        notes.write_text("STAGE_1_COMPLETE")
        notes.chmod(0)
        try:
            assert probe(tmp_path).stage == 0
        finally:
            notes.chmod(0o644)

    def test_custom_registry(self, tmp_path: Path) -> None:
        stages = (Stage("plan.md", "PLANNED", "Planning"), Stage("out.json", None, "Writing"))
        (tmp_path / "plan.md").write_text("PLANNED")

        report = probe(tmp_path, stages)

        assert report.stage == 1
        assert report.total == 2
        assert report.label == "Writing"

    def test_report_to_dict_uses_wire_names(self, tmp_path: Path) -> None:
        write_stage_files(tmp_path, 1)

        data = probe(tmp_path).to_dict()

        assert data["stage"] == 1
        assert data["files"]["exploration_notes.md"] == {
            "exists": True,
            "hasExpectedToken": True,
            "checkpoints": {"STAGE_1_COMPLETE": True},
        }

"""Story document models.

Pydantic models for the story wire format written by the agent, persisted
in the catalog and consumed by the viewer. Field names on the wire are
camelCase; Python attributes are snake_case.

Only one schema version is accepted: ``chapters`` (not the legacy
``views``) with an optional ``repo`` reference.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from codestory.core.errors import ArtifactInvalidError, InvalidIdentifierError

STORY_SCHEMA_VERSION = 1

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_story_id(value: object) -> bool:
    """Check whether ``value`` is a canonical 8-4-4-4-12 hex UUID string."""
    return isinstance(value, str) and UUID_PATTERN.match(value) is not None


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Snippet(_WireModel):
    """A contiguous range of source lines shown in a chapter."""

    file_path: StrictStr = Field(alias="filePath")
    start_line: StrictInt = Field(alias="startLine", ge=1)
    end_line: StrictInt = Field(alias="endLine", ge=1)
    content: StrictStr

    @field_validator("end_line")
    @classmethod
    def _end_after_start(cls, value: int, info: ValidationInfo) -> int:
        start = info.data.get("start_line")
        if start is not None and value < start:
            raise ValueError(f"endLine ({value}) is before startLine ({start})")
        return value

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


class Chapter(_WireModel):
    """One step of the story: code on one side, explanation on the other."""

    id: StrictStr
    label: StrictStr
    snippets: list[Snippet]
    explanation: StrictStr


class Story(_WireModel):
    """A complete code story."""

    id: StrictStr
    title: StrictStr
    query: StrictStr
    repo: StrictStr | None = None
    commit_hash: StrictStr = Field(alias="commitHash")
    created_at: StrictStr = Field(alias="createdAt")
    chapters: list[Chapter] = Field(min_length=1)
    schema_version: Literal[1] = Field(default=STORY_SCHEMA_VERSION, alias="schemaVersion")

    @field_validator("created_at")
    @classmethod
    def _iso_timestamp(cls, value: str) -> str:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"'{value}' is not an ISO 8601 timestamp") from None
        return value

    def to_document(self) -> dict[str, Any]:
        """Wire form used for persistence and the API."""
        return self.model_dump(by_alias=True, mode="json")

    def summary(self) -> StorySummary:
        return StorySummary(
            id=self.id,
            title=self.title,
            commit_hash=self.commit_hash,
            created_at=self.created_at,
        )


class StorySummary(_WireModel):
    """Manifest entry for one story."""

    id: StrictStr
    title: StrictStr
    commit_hash: StrictStr = Field(alias="commitHash")
    created_at: StrictStr = Field(alias="createdAt")


class StoryManifest(BaseModel):
    """Summary of every stored story, newest first."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    stories: list[StorySummary] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Validation
# =============================================================================


def _format_loc(loc: tuple[int | str, ...]) -> str:
    """Render a pydantic error location as ``chapters[2].snippets[0].startLine``."""
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or "<root>"


def validate_story_document(data: Any) -> Story:
    """Validate a parsed story document.

    Structure is checked first, then the id. The first offending field is
    reported with its chapter/snippet index.

    Raises:
        ArtifactInvalidError: If a field is missing or has the wrong shape
        InvalidIdentifierError: If ``id`` is not a canonical UUID
    """
    if not isinstance(data, dict):
        raise ArtifactInvalidError("<root>", f"expected a JSON object, got {type(data).__name__}")

    if "chapters" not in data and "views" in data:
        raise ArtifactInvalidError(
            "chapters",
            "field required; found a legacy 'views' array, which this schema version does not accept",
        )

    try:
        story = Story.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        raise ArtifactInvalidError(_format_loc(first["loc"]), first["msg"]) from e

    if not is_valid_story_id(story.id):
        raise InvalidIdentifierError(story.id)

    return story


def validate_manifest_document(data: Any) -> StoryManifest:
    """Validate a parsed manifest document."""
    try:
        return StoryManifest.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        raise ArtifactInvalidError(_format_loc(first["loc"]), first["msg"]) from e

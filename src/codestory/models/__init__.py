"""Data models for Code Story.

Pydantic models for:
- Stories, chapters and snippets (the agent's output contract)
- The catalog manifest
"""

from .story import (
    STORY_SCHEMA_VERSION,
    UUID_PATTERN,
    Chapter,
    Snippet,
    Story,
    StoryManifest,
    StorySummary,
    is_valid_story_id,
    validate_manifest_document,
    validate_story_document,
)

__all__ = [
    "STORY_SCHEMA_VERSION",
    "UUID_PATTERN",
    "Story",
    "Chapter",
    "Snippet",
    "StoryManifest",
    "StorySummary",
    "is_valid_story_id",
    "validate_story_document",
    "validate_manifest_document",
]

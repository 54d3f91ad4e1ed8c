"""Story viewer.

Resolves and fetches story documents from local catalogs or remote hosts
and renders them in the terminal.
"""

from .render import browse_story, lexer_for, manifest_table, show_story
from .source import (
    StoryFetcher,
    normalize_story_reference,
    resolve_manifest_url,
    resolve_story_url,
)

__all__ = [
    "StoryFetcher",
    "browse_story",
    "lexer_for",
    "manifest_table",
    "normalize_story_reference",
    "resolve_manifest_url",
    "resolve_story_url",
    "show_story",
]

"""Stories router for the story catalog.

Serves the manifest and stored story documents exactly as they are
written to disk, so a static host and this API are interchangeable for
the viewer.
"""

from typing import Any

from fastapi import APIRouter

from codestory.api.deps import Catalog

router = APIRouter()


@router.get("")
async def list_stories(catalog: Catalog) -> dict[str, Any]:
    """Get the manifest of stored stories, newest first."""
    return catalog.list_stories().to_document()


@router.get("/{story_id}")
async def get_story(story_id: str, catalog: Catalog) -> dict[str, Any]:
    """Get a story document.

    Raises:
        StoryNotFoundError: Mapped to 404 when the id is unknown or malformed
    """
    return catalog.get_story(story_id).to_document()

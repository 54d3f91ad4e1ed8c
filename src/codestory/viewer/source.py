"""Story sources for the viewer.

Resolves where a story or manifest lives (direct URL, GitHub blob URL or
``user/repo`` shorthand), fetches it with httpx, and validates it with the
same schema the ingestor enforces. Any failure surfaces as
``StoryLoadError``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

import httpx

from codestory.core.errors import CodeStoryError, StoryLoadError
from codestory.models import Story, StoryManifest, validate_manifest_document, validate_story_document

logger = logging.getLogger("codestory.viewer")

DEFAULT_RAW_BASE = "https://raw.githubusercontent.com"
DEFAULT_BRANCH = "main"
STORIES_FOLDER = "stories"

BLOB_URL_PATTERN = re.compile(r"^https?://github\.com/([^/]+/[^/]+)/blob/(.+)$")
SHORTHAND_PATTERN = re.compile(r"^([^/]+/[^/]+)[/:]([a-f0-9-]+)$", re.IGNORECASE)


# =============================================================================
# URL Resolution
# =============================================================================


def _raw_story_path(repo: str, name: str, raw_base: str) -> str:
    return f"{raw_base.rstrip('/')}/{repo}/{DEFAULT_BRANCH}/{STORIES_FOLDER}/{name}.json"


def resolve_story_url(
    url: str | None = None,
    repo: str | None = None,
    story: str | None = None,
    raw_base: str = DEFAULT_RAW_BASE,
) -> str | None:
    """Story URL from the viewer parameters.

    ``url`` wins; otherwise ``repo`` and ``story`` both have to be given.
    """
    if url:
        return url
    if repo and story:
        return _raw_story_path(repo, story, raw_base)
    return None


def resolve_manifest_url(
    manifest: str | None = None,
    repo: str | None = None,
    story: str | None = None,
    raw_base: str = DEFAULT_RAW_BASE,
) -> str | None:
    """Manifest URL from the viewer parameters.

    A ``repo`` alone points at its manifest; with a ``story`` it points at
    that story instead, so no manifest is resolved.
    """
    if manifest:
        return manifest
    if repo and not story:
        return _raw_story_path(repo, "manifest", raw_base)
    return None


def normalize_story_reference(reference: str, raw_base: str = DEFAULT_RAW_BASE) -> str:
    """Turn free-form input into a fetchable URL.

    Accepts a GitHub blob URL, ``user/repo/<story-id>`` or
    ``user/repo:<story-id>``; anything else is returned unchanged.
    """
    reference = reference.strip()
    blob = BLOB_URL_PATTERN.match(reference)
    if blob:
        return f"{raw_base.rstrip('/')}/{blob.group(1)}/{blob.group(2)}"
    shorthand = SHORTHAND_PATTERN.match(reference)
    if shorthand:
        return _raw_story_path(shorthand.group(1), shorthand.group(2), raw_base)
    return reference


# =============================================================================
# Fetching
# =============================================================================


class StoryFetcher:
    """Async fetcher for remote story documents.

    Args:
        timeout: Request timeout in seconds
        headers: Extra request headers (e.g. a GitHub token)
        transport: Custom httpx transport, used by tests

    Example:
        async with StoryFetcher() as fetcher:
            story = await fetcher.fetch_story(url)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.headers = headers or {}
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "StoryFetcher":
        """Support async context manager."""
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Close client on context exit."""
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_json(self, url: str, kind: str = "story") -> Any:
        """GET ``url`` and parse the body as JSON.

        Raises:
            StoryLoadError: On transport errors, non-2xx status or bad JSON
        """
        client = await self._get_client()
        logger.debug(f"Fetching {kind} from {url}")
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise StoryLoadError(f"Failed to fetch {kind}: {e}", details={"url": url}) from e

        if response.status_code >= 400:
            raise StoryLoadError(
                f"Failed to fetch {kind}: {response.status_code} {response.reason_phrase}",
                details={"url": url, "status_code": response.status_code},
            )

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoryLoadError(f"Failed to parse {kind} from {url}: {e}", details={"url": url}) from e

    async def fetch_story(self, url: str) -> Story:
        """Fetch and validate a story document."""
        data = await self.fetch_json(url, "story")
        try:
            return validate_story_document(data)
        except CodeStoryError as e:
            raise StoryLoadError(f"Invalid story at {url}: {e.message}", details={"url": url, **e.details}) from e

    async def fetch_manifest(self, url: str) -> StoryManifest:
        """Fetch and validate a manifest document."""
        data = await self.fetch_json(url, "manifest")
        try:
            return validate_manifest_document(data)
        except CodeStoryError as e:
            raise StoryLoadError(
                f"Invalid manifest at {url}: {e.message}", details={"url": url, **e.details}
            ) from e

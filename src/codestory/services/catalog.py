"""Story catalog - file-backed store of generated stories.

Layout under the catalog root::

    <root>/<story-id>.json      one document per story
    <root>/manifest.json        summaries, newest first
    <root>/.tmp/<generation>/   working directory per in-flight or failed generation
    <root>/.code-stories        marker showing the directory is ours

The manifest read-prepend-write is the only step shared between concurrent
generations. It runs under a process-local lock and an ``fcntl`` lock on a
sidecar file so a CLI and a server sharing one catalog cannot lose each
other's entries.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import shutil
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from codestory.core.errors import (
    ArtifactInvalidError,
    CodeStoryError,
    InvalidIdentifierError,
    StoryNotFoundError,
)
from codestory.models import (
    Story,
    StoryManifest,
    is_valid_story_id,
    validate_manifest_document,
    validate_story_document,
)

logger = logging.getLogger("codestory.catalog")

MANIFEST_NAME = "manifest.json"
MARKER_NAME = ".code-stories"
TMP_DIR_NAME = ".tmp"
LOCK_NAME = ".manifest.lock"


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class StoryCatalog:
    """Durable store of stories plus the summary manifest.

    Usage:
        catalog = StoryCatalog(Path("stories"))
        catalog.ensure()
        catalog.save_story(story)
        catalog.prepend_summary(story)
        manifest = catalog.list_stories()
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.tmp_dir = self.root / TMP_DIR_NAME
        self.manifest_path = self.root / MANIFEST_NAME
        self._lock = threading.Lock()

    def ensure(self) -> None:
        """Create the catalog directories and marker file."""
        if self.root.exists():
            entries = [entry for entry in self.root.iterdir() if entry.name != TMP_DIR_NAME]
            if entries and not (self.root / MARKER_NAME).exists():
                logger.warning(
                    f"{self.root}/ exists but was not created by code-stories. "
                    "Proceeding may overwrite existing files."
                )
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / MARKER_NAME).touch(exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    # -------------------------------------------------------------------------
    # Working directories
    # -------------------------------------------------------------------------

    def working_dir(self, generation_id: str) -> Path:
        """Working directory for a generation (not created)."""
        if not is_valid_story_id(generation_id):
            raise InvalidIdentifierError(generation_id)
        return self.tmp_dir / generation_id

    def pending_generations(self) -> list[Path]:
        """Working directories left on disk (in flight or failed)."""
        if not self.tmp_dir.is_dir():
            return []
        return sorted(path for path in self.tmp_dir.iterdir() if path.is_dir())

    def discard_working_dir(self, working_dir: Path) -> None:
        shutil.rmtree(working_dir, ignore_errors=True)

    # -------------------------------------------------------------------------
    # Stories
    # -------------------------------------------------------------------------

    def story_path(self, story_id: str) -> Path:
        if not is_valid_story_id(story_id):
            raise InvalidIdentifierError(story_id)
        return self.root / f"{story_id.lower()}.json"

    def save_story(self, story: Story) -> Path:
        """Write the story document keyed by its id."""
        path = self.story_path(story.id)
        atomic_write_text(path, json.dumps(story.to_document(), indent=2, ensure_ascii=False))
        logger.debug(f"Saved story {story.id} to {path}")
        return path

    def has_story(self, story_id: str) -> bool:
        return is_valid_story_id(story_id) and self.story_path(story_id).is_file()

    def get_story(self, story_id: str) -> Story:
        """Load a stored story.

        Raises:
            StoryNotFoundError: If no valid story is stored under ``story_id``
            CodeStoryError: If the stored document is not readable JSON
        """
        if not is_valid_story_id(story_id):
            raise StoryNotFoundError(story_id)
        path = self.story_path(story_id)
        if not path.is_file():
            raise StoryNotFoundError(story_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CodeStoryError(f"Story {story_id} is corrupt: {e}", code="story_corrupt") from e
        return validate_story_document(data)

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    @contextmanager
    def _manifest_lock(self) -> Iterator[None]:
        lock_path = self.root / LOCK_NAME
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, lock_path.open("a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read_manifest(self) -> StoryManifest:
        if not self.manifest_path.is_file():
            return StoryManifest()
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8"))
            return validate_manifest_document(data)
        except (json.JSONDecodeError, ArtifactInvalidError) as e:
            raise CodeStoryError(
                f"Manifest {self.manifest_path} is corrupt: {e}. Run `codestory reindex` to rebuild it.",
                code="manifest_corrupt",
            ) from e

    def _write_manifest(self, manifest: StoryManifest) -> None:
        atomic_write_text(
            self.manifest_path,
            json.dumps(manifest.to_document(), indent=2, ensure_ascii=False),
        )

    def list_stories(self) -> StoryManifest:
        """The manifest; empty when none has been written yet."""
        return self._read_manifest()

    def prepend_summary(self, story: Story) -> StoryManifest:
        """Add the story's summary to the front of the manifest."""
        with self._manifest_lock():
            manifest = self._read_manifest()
            # Re-ingesting an id replaces its entry
            manifest.stories = [s for s in manifest.stories if s.id != story.id]
            manifest.stories.insert(0, story.summary())
            self._write_manifest(manifest)
        logger.debug(f"Manifest now lists {len(manifest.stories)} stories")
        return manifest

    def rebuild_manifest(self) -> StoryManifest:
        """Rescan stored documents and rewrite the manifest, newest first.

        Recovers entries lost when an ingestion stopped between writing the
        story and updating the manifest. Invalid documents are skipped.
        """
        stories: list[Story] = []
        for path in sorted(self.root.glob("*.json")):
            if path.name == MANIFEST_NAME:
                continue
            try:
                stories.append(validate_story_document(json.loads(path.read_text(encoding="utf-8"))))
            except (json.JSONDecodeError, CodeStoryError) as e:
                logger.warning(f"Skipping {path.name}: {e}")

        stories.sort(key=lambda story: story.created_at, reverse=True)
        manifest = StoryManifest(stories=[story.summary() for story in stories])
        with self._manifest_lock():
            self._write_manifest(manifest)
        logger.info(f"Rebuilt manifest with {len(stories)} stories")
        return manifest

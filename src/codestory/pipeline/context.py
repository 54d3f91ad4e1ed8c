"""Generation context and lifecycle state.

Each generation gets its own id and working directory, so concurrent
generations never share progress state. The registry only remembers how
each generation ended; progress itself is always re-read from disk.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class GenerationState(str, Enum):
    """Lifecycle of one generation."""

    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationState.SUCCEEDED, GenerationState.FAILED, GenerationState.CANCELLED)


_TRANSITIONS: dict[GenerationState, frozenset[GenerationState]] = {
    GenerationState.CREATED: frozenset(
        {GenerationState.RUNNING, GenerationState.FAILED, GenerationState.CANCELLED}
    ),
    GenerationState.RUNNING: frozenset(
        {GenerationState.SUCCEEDED, GenerationState.FAILED, GenerationState.CANCELLED}
    ),
    GenerationState.SUCCEEDED: frozenset(),
    GenerationState.FAILED: frozenset(),
    GenerationState.CANCELLED: frozenset(),
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class GenerationContext:
    """Identity, inputs and state of one generation."""

    generation_id: str
    working_dir: Path
    query: str
    repo: str | None = None
    source_dir: Path | None = None
    source_commit: str = "unknown"
    created_at: str = field(default_factory=utc_now)
    state: GenerationState = GenerationState.CREATED
    finished_at: str | None = None
    story_id: str | None = None
    error: dict[str, Any] | None = None

    def advance(self, state: GenerationState) -> None:
        """Move to ``state``.

        Raises:
            RuntimeError: If the transition is not allowed
        """
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Generation {self.generation_id}: illegal transition {self.state.value} -> {state.value}"
            )
        self.state = state
        if state.is_terminal:
            self.finished_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "generationId": self.generation_id,
            "query": self.query,
            "repo": self.repo,
            "state": self.state.value,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
            "storyId": self.story_id,
            "error": self.error,
        }


class GenerationRegistry:
    """Thread-safe index of generations by id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._contexts: dict[str, GenerationContext] = {}

    def add(self, context: GenerationContext) -> None:
        with self._lock:
            self._contexts[context.generation_id] = context

    def get(self, generation_id: str) -> GenerationContext | None:
        with self._lock:
            return self._contexts.get(generation_id)

    def all(self) -> list[GenerationContext]:
        with self._lock:
            return list(self._contexts.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._contexts)

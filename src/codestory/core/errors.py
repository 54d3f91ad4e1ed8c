"""Error taxonomy for story generation.

Every failure a generation can end in maps to one class here. Each carries
a machine-readable ``code`` so the CLI, the API and the progress endpoint
report the same reason.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class CodeStoryError(Exception):
    """Base exception for Code Story errors.

    Args:
        message: Human-readable error message
        code: Machine-readable error code for programmatic handling
        details: Additional context about the error
    """

    code = "codestory_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {"error": self.message, "code": self.code, "details": self.details}


class AgentSpawnError(CodeStoryError):
    """The agent process could not be started."""

    code = "spawn_failure"


class ArtifactMissingError(CodeStoryError):
    """The agent exited without writing the final artifact."""

    code = "artifact_missing"

    def __init__(self, path: Path) -> None:
        super().__init__(f"{path.name} not created", details={"path": str(path)})
        self.path = path


class ArtifactMalformedError(CodeStoryError):
    """The final artifact is not a parseable JSON document."""

    code = "artifact_malformed"


class ArtifactInvalidError(CodeStoryError):
    """The final artifact does not satisfy the story schema.

    ``field`` is the path of the first offending field, for example
    ``chapters[2].snippets[0].startLine``.
    """

    code = "artifact_invalid"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(
            f"Invalid story field '{field}': {reason}",
            details={"field": field, "reason": reason},
        )
        self.field = field
        self.reason = reason


class InvalidIdentifierError(CodeStoryError):
    """A story id is not a canonical UUID."""

    code = "invalid_identifier"

    def __init__(self, value: object) -> None:
        super().__init__(
            f'Invalid story ID: "{value}" is not a valid UUID. '
            "Expected format: xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx",
            details={"id": str(value)},
        )
        self.value = value


class ExternalResourceError(CodeStoryError):
    """An external resource (e.g. a repository clone) could not be acquired."""

    code = "external_resource"


class CloneTimeoutError(ExternalResourceError):
    """Cloning an external repository exceeded its timeout."""

    code = "clone_timeout"


class StoryNotFoundError(CodeStoryError):
    """No story with the given id exists in the catalog."""

    code = "not_found"

    def __init__(self, story_id: str) -> None:
        super().__init__(f"Story '{story_id}' not found", details={"id": story_id})
        self.story_id = story_id


class StoryLoadError(CodeStoryError):
    """A story document could not be fetched or failed validation."""

    code = "story_load"


class GenerationFailedError(CodeStoryError):
    """A generation ended in the FAILED state.

    Wraps the underlying cause and carries the retained working directory
    and a slice of the agent's stderr for diagnostics.
    """

    code = "generation_failed"

    def __init__(
        self,
        cause: CodeStoryError,
        working_dir: Path,
        stderr: str = "",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(
            cause.message,
            details={
                "reason": cause.code,
                "working_dir": str(working_dir),
                "exit_code": exit_code,
                "stderr": stderr,
                **cause.details,
            },
        )
        self.cause = cause
        self.working_dir = working_dir
        self.stderr = stderr
        self.exit_code = exit_code

    @property
    def reason(self) -> str:
        """Error code of the underlying cause."""
        return self.cause.code

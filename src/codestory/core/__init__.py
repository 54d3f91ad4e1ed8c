"""Core utilities and configuration for Code Story.

This module contains:
- Configuration and settings management
- The error taxonomy shared by the pipeline, CLI and API
- Console logging setup
"""
from .config import Settings, get_settings
from .errors import (
    AgentSpawnError,
    ArtifactInvalidError,
    ArtifactMalformedError,
    ArtifactMissingError,
    CloneTimeoutError,
    CodeStoryError,
    ExternalResourceError,
    GenerationFailedError,
    InvalidIdentifierError,
    StoryLoadError,
    StoryNotFoundError,
)
from .logging import configure_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Logging
    "configure_logging",
    # Errors
    "CodeStoryError",
    "AgentSpawnError",
    "ArtifactMissingError",
    "ArtifactMalformedError",
    "ArtifactInvalidError",
    "InvalidIdentifierError",
    "ExternalResourceError",
    "CloneTimeoutError",
    "StoryNotFoundError",
    "StoryLoadError",
    "GenerationFailedError",
]

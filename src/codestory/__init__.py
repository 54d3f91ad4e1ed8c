"""Code Story - narrated walkthroughs of a codebase.

An agent explores a repository in response to a question and writes a
story: ordered chapters that pair code snippets with markdown
explanations. Code Story supervises the agent, tracks its progress through
file checkpoints, and validates and catalogs the result.

Quick Start:
    from codestory import generate_story

    result = await generate_story("How does the router dispatch requests?")
    print(result.story.title)

    # With progress events
    generator = StoryGenerator(StoryCatalog("stories"))
    result = await generator.generate(
        query,
        repo="owner/repo",
        on_event=lambda e: print(f"{e.label}: {e.progress_percent}%"),
    )
"""

__version__ = "0.2.0"

from codestory.models import Chapter, Snippet, Story, StoryManifest
from codestory.pipeline import (
    GenerationResult,
    PipelineEvent,
    PipelineEventType,
    StoryGenerator,
    generate_story,
    probe,
)
from codestory.services import StoryCatalog

__all__ = [
    # Version
    "__version__",
    # Models
    "Story",
    "Chapter",
    "Snippet",
    "StoryManifest",
    # Pipeline
    "StoryGenerator",
    "GenerationResult",
    "PipelineEvent",
    "PipelineEventType",
    "generate_story",
    "probe",
    # Catalog
    "StoryCatalog",
]

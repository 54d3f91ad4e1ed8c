"""FastAPI dependencies for dependency injection.

The application factory stores the catalog, generation registry and
generator on ``app.state``; these dependencies hand them to endpoints.
"""

from typing import Annotated

from fastapi import Depends, Request

from codestory.core.config import Settings
from codestory.pipeline import GenerationRegistry, StoryGenerator
from codestory.services import StoryCatalog


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_catalog(request: Request) -> StoryCatalog:
    return request.app.state.catalog


def get_registry(request: Request) -> GenerationRegistry:
    return request.app.state.registry


def get_generator(request: Request) -> StoryGenerator:
    return request.app.state.generator


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Catalog = Annotated[StoryCatalog, Depends(get_catalog)]
Registry = Annotated[GenerationRegistry, Depends(get_registry)]
Generator = Annotated[StoryGenerator, Depends(get_generator)]

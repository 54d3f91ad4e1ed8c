"""FastAPI application entry point.

Main application configuration, middleware, and startup lifecycle.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from codestory.agents import AgentRunner
from codestory.core.config import Settings, get_settings
from codestory.pipeline import GenerationRegistry, StoryGenerator
from codestory.services import StoryCatalog

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup:
    - Create the catalog directories

    Shutdown:
    - Cancel generations still in flight (their working directories are removed)
    """
    catalog: StoryCatalog = app.state.catalog
    logger.info(f"Using story catalog at {catalog.root.resolve()}")
    catalog.ensure()

    pending = catalog.pending_generations()
    if pending:
        logger.info(f"{len(pending)} working directories left from earlier generations")

    yield

    # Shutdown
    tasks: set[asyncio.Task] = app.state.tasks
    if tasks:
        logger.info(f"Cancelling {len(tasks)} running generations...")
        for task in list(tasks):
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Shut down")


def create_app(
    settings: Settings | None = None,
    runner: AgentRunner | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings (cached settings if not provided)
        runner: Agent runner override, used by tests

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    is_production = settings.environment == "production"

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Generate narrated walkthroughs of a codebase with a coding agent",
        version=settings.app_version,
        docs_url="/api/docs" if not is_production else None,
        redoc_url="/api/redoc" if not is_production else None,
        openapi_url="/api/openapi.json" if not is_production else None,
        lifespan=lifespan,
    )

    catalog = StoryCatalog(settings.stories_dir)
    app.state.settings = settings
    app.state.catalog = catalog
    app.state.registry = GenerationRegistry()
    app.state.generator = StoryGenerator(
        catalog,
        runner,
        settings=settings,
        registry=app.state.registry,
    )
    app.state.tasks = set()

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",  # Vite dev server
            "http://localhost:5173",  # Vite default
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ] if not is_production else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add compression for responses > 1KB
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Import and register routers
    from codestory.api.routers import generate, git, health, sse, stories

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(generate.router, prefix="/api/generate", tags=["generate"])
    app.include_router(sse.router, prefix="/api/generate", tags=["sse"])
    app.include_router(stories.router, prefix="/api/stories", tags=["stories"])
    app.include_router(git.router, prefix="/api/git", tags=["git"])

    # Register exception handlers
    from codestory.api.exceptions import register_exception_handlers
    register_exception_handlers(app)

    return app


if __name__ == "__main__":
    import uvicorn

    from codestory.core.logging import configure_logging

    settings = get_settings()
    configure_logging(level=settings.log_level)
    uvicorn.run(
        "codestory.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
    )

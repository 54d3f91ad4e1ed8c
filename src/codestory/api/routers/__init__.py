"""API routers for different endpoint groups.

Routers:
- generate: Start generations and read their progress
- sse: Server-Sent Events stream of generation progress
- stories: Story catalog
- git: Commit of the served codebase
- health: Health check and monitoring endpoints
"""

from .generate import router as generate_router
from .git import router as git_router
from .health import router as health_router
from .sse import router as sse_router
from .stories import router as stories_router

__all__ = [
    "generate_router",
    "git_router",
    "health_router",
    "sse_router",
    "stories_router",
]

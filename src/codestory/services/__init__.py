"""Backend services for Code Story.

Deterministic, infrastructure-level services used around the agent. They
never interpret what the agent writes.

Services:
- catalog: persisted stories and the summary manifest
- repository: commit lookup and scoped shallow clones
"""

from .catalog import StoryCatalog, atomic_write_text
from .repository import (
    ClonedRepository,
    clone_repository,
    cloned_repository,
    get_commit_hash,
    parse_github_repo,
)

__all__ = [
    # Catalog
    "StoryCatalog",
    "atomic_write_text",
    # Repository
    "ClonedRepository",
    "clone_repository",
    "cloned_repository",
    "get_commit_hash",
    "parse_github_repo",
]

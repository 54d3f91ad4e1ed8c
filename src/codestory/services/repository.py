"""Repository Service - git integration.

Resolves the commit being narrated and acquires external GitHub
repositories as shallow clones. Clones are scoped: ``cloned_repository``
removes the clone on every exit path, including cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from codestory.core.errors import CloneTimeoutError, ExternalResourceError

logger = logging.getLogger("codestory.repository")

GITHUB_URL_PATTERN = re.compile(r"github\.com[/:]([^/]+/[^/.]+)")
REPO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")

UNKNOWN_COMMIT = "unknown"


@dataclass(frozen=True)
class ClonedRepository:
    """A temporary shallow clone."""

    repo_id: str  # owner/repo
    path: Path


def parse_github_repo(repo: str) -> str:
    """Extract ``owner/repo`` from a GitHub URL, or return the shorthand.

    Args:
        repo: ``owner/repo`` or a URL like https://github.com/owner/repo(.git)

    Raises:
        ExternalResourceError: If the reference is neither form
    """
    repo = repo.strip()
    match = GITHUB_URL_PATTERN.search(repo)
    repo_id = match.group(1) if match else repo.rstrip("/")
    if repo_id.endswith(".git"):
        repo_id = repo_id[: -len(".git")]
    if not REPO_ID_PATTERN.match(repo_id):
        raise ExternalResourceError(
            f"Invalid GitHub repository: {repo}. Expected user/repo or https://github.com/user/repo",
            details={"repo": repo},
        )
    return repo_id


async def get_commit_hash(cwd: Path | str) -> str:
    """Current HEAD commit of the tree at ``cwd``, or ``"unknown"``."""
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "HEAD",
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.warning(f"Failed to get commit hash: {e}")
        return UNKNOWN_COMMIT

    if process.returncode != 0:
        logger.warning(f"Failed to get commit hash: {stderr.decode(errors='replace').strip()}")
        return UNKNOWN_COMMIT
    return stdout.decode().strip() or UNKNOWN_COMMIT


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def clone_repository(
    repo: str,
    *,
    timeout: float = 60.0,
    clone_base: str = "https://github.com",
    parent_dir: Path | None = None,
) -> ClonedRepository:
    """Shallow-clone a GitHub repository into a fresh temp directory.

    The caller owns the returned directory. Any partial clone is removed
    before an error propagates.

    Raises:
        CloneTimeoutError: If git does not finish within ``timeout`` seconds
        ExternalResourceError: If git is missing or the clone fails
    """
    repo_id = parse_github_repo(repo)
    clone_url = f"{clone_base.rstrip('/')}/{repo_id}.git"
    target = Path(parent_dir or tempfile.gettempdir()) / f"code-stories-{uuid.uuid4()}"

    logger.info(f"Cloning {repo_id}...")
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            "clone",
            "--depth",
            "1",
            clone_url,
            str(target),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExternalResourceError(f"Could not run git: {e}", details={"repo": repo_id}) from e

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        shutil.rmtree(target, ignore_errors=True)
        raise CloneTimeoutError(
            f"Git clone timed out after {timeout:g} seconds. "
            "The repository may be too large or the network is slow.",
            details={"repo": repo_id, "timeout": timeout},
        ) from None
    except BaseException:
        await _terminate(process)
        shutil.rmtree(target, ignore_errors=True)
        raise

    if process.returncode != 0:
        shutil.rmtree(target, ignore_errors=True)
        raise ExternalResourceError(
            f"Clone of {repo_id} failed: {stderr.decode(errors='replace').strip()}",
            details={"repo": repo_id, "exit_code": process.returncode},
        )

    return ClonedRepository(repo_id=repo_id, path=target)


def cleanup_clone(clone: ClonedRepository) -> None:
    try:
        shutil.rmtree(clone.path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up cloned repo: {e}")


@asynccontextmanager
async def cloned_repository(
    repo: str,
    *,
    timeout: float = 60.0,
    clone_base: str = "https://github.com",
    parent_dir: Path | None = None,
) -> AsyncIterator[ClonedRepository]:
    """Clone for the duration of the block; always removed afterwards."""
    clone = await clone_repository(
        repo, timeout=timeout, clone_base=clone_base, parent_dir=parent_dir
    )
    try:
        yield clone
    finally:
        cleanup_clone(clone)

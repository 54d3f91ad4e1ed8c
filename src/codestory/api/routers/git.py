"""Git router."""

from fastapi import APIRouter

from codestory.api.deps import AppSettings
from codestory.services import get_commit_hash

router = APIRouter()


@router.get("/commit-hash")
async def commit_hash(settings: AppSettings) -> dict[str, str]:
    """HEAD commit of the served codebase, or ``"unknown"``."""
    return {"commitHash": await get_commit_hash(settings.codebase_dir)}

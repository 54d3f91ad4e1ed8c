"""Server-Sent Events (SSE) endpoint for generation progress.

Streams the same payload as the progress endpoint whenever it changes,
allowing clients to follow a generation without polling. The stream ends
once the generation reaches a terminal state.
"""

import asyncio
import json
from typing import AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from codestory.api.deps import AppSettings, Catalog, Registry
from codestory.pipeline import GenerationRegistry
from codestory.services import StoryCatalog

from .generate import build_progress

router = APIRouter()

TERMINAL_STATES = ("succeeded", "failed", "cancelled")
KEEPALIVE_SECONDS = 30.0


async def _event_generator(
    generation_id: str,
    request: Request,
    catalog: StoryCatalog,
    registry: GenerationRegistry,
    interval: float,
) -> AsyncGenerator[str, None]:
    """Generate SSE events for a generation.

    Args:
        generation_id: Generation to follow
        request: FastAPI request for disconnect detection
        catalog: Catalog hosting the working directory
        registry: Generation registry
        interval: Seconds between probes

    Yields:
        SSE formatted event strings
    """
    last_payload: str | None = None
    idle = 0.0
    while True:
        # Check for client disconnect
        if await request.is_disconnected():
            break

        progress = build_progress(generation_id, catalog, registry)
        payload = json.dumps(progress.model_dump(by_alias=True))
        if payload != last_payload:
            last_payload = payload
            idle = 0.0
            yield f"data: {payload}\n\n"
        elif idle >= KEEPALIVE_SECONDS:
            idle = 0.0
            yield ": keepalive\n\n"

        if progress.state in TERMINAL_STATES or progress.state == "unknown":
            break

        await asyncio.sleep(interval)
        idle += interval


@router.get("/{generation_id}/events")
async def generation_event_stream(
    generation_id: str,
    request: Request,
    settings: AppSettings,
    catalog: Catalog,
    registry: Registry,
) -> StreamingResponse:
    """Stream generation progress via SSE.

    Args:
        generation_id: Generation to subscribe to
        request: FastAPI request

    Returns:
        SSE stream of progress payloads
    """
    return StreamingResponse(
        _event_generator(generation_id, request, catalog, registry, settings.poll_interval),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )

"""Server-Sent Events endpoint for live session updates."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import StreamingResponse

from auth import get_service
from config import HOST_SECRET_HEADER, SSE_RETRY_MS
from engine.feed import HEARTBEAT, watch_session

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: dict[str, Any]) -> str:
    """Frame one feed event. Heartbeats are SSE comments, the rest are data lines."""
    if event["type"] == HEARTBEAT:
        return ": heartbeat\n\n"
    return f"data: {json.dumps(event)}\n\n"


async def event_stream(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    """Prefix the reconnect hint, then frame every event."""
    yield f"retry: {SSE_RETRY_MS}\n\n"
    async for event in events:
        yield format_event(event)


@router.get("/{session_id}/events")
async def session_events(
    session_id: str,
    request: Request,
    player_id: str | None = Query(None),
    host_secret_param: str | None = Query(None, alias="host_secret"),
    host_secret_header: str | None = Header(None, alias=HOST_SECRET_HEADER),
) -> StreamingResponse:
    """Stream session snapshots as they change.

    Browsers' EventSource cannot set headers, so the host secret may also
    be given as the ``host_secret`` query parameter. The stream ends with a
    ``session_not_found`` or ``forbidden`` event when the session is gone or
    the credentials do not match.
    """
    events = watch_session(
        get_service(request),
        session_id,
        host_secret=host_secret_header or host_secret_param,
        player_id=player_id,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(event_stream(events), media_type="text/event-stream", headers=SSE_HEADERS)

"""Live view feed: per-subscriber change detection over a session.

Each subscriber runs its own polling loop. Every tick re-reads the session
record (without result images), compares a fingerprint with the last one
pushed, and only loads the full snapshot when something changed. The loop
is a read-side observer and never blocks the session service.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable

from config import FEED_HEARTBEAT_INTERVAL, FEED_POLL_INTERVAL
from engine.service import SessionService
from models.session import Session, serialize_session

logger = logging.getLogger(__name__)

SESSION_UPDATE = "session_update"
SESSION_NOT_FOUND = "session_not_found"
FORBIDDEN = "forbidden"
ERROR = "error"
HEARTBEAT = "heartbeat"


def session_fingerprint(session: Session) -> tuple:
    """Cheap change signature: update stamp, players, and every entry's progress."""
    return (
        session.updated_at,
        session.status,
        session.current_round_index,
        len(session.players),
        tuple(
            (
                round_.status,
                round_.goal_image_mime_type,
                tuple(
                    (player_id, entry.status, entry.current_role_index, entry.score, entry.generated_at)
                    for player_id, entry in round_.entries.items()
                ),
            )
            for round_ in session.rounds
        ),
    )


async def watch_session(
    service: SessionService,
    session_id: str,
    host_secret: str | None = None,
    player_id: str | None = None,
    is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    poll_interval: float = FEED_POLL_INTERVAL,
    heartbeat_interval: float = FEED_HEARTBEAT_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
) -> AsyncIterator[dict]:
    """Yield feed events for one subscriber until it goes away.

    Events are dicts with a ``type`` of ``session_update`` (with the
    serialized ``session``), ``session_not_found``, ``forbidden``,
    ``error`` or ``heartbeat``. The first tick always produces a
    ``session_update``. The generator finishes after ``session_not_found``
    or ``forbidden``, and as soon as ``is_disconnected`` reports True.
    Read failures are logged, reported as ``error`` and retried next tick.

    Args:
        service: Session service to read through.
        session_id: Room code to watch.
        host_secret: If given, must match the session's host secret.
        player_id: If given, must belong to a player of the session.
        is_disconnected: Transport's disconnect check, polled every tick.
        poll_interval: Seconds between reads.
        heartbeat_interval: Idle seconds before a heartbeat is emitted.
        clock: Monotonic time source, injectable for tests.
    """
    last_fingerprint: tuple | None = None
    last_sent = clock()

    while True:
        if is_disconnected is not None and await is_disconnected():
            logger.debug("Live feed subscriber for session %s disconnected", session_id)
            return

        try:
            current = await service.find_session(session_id, hydrate=False)
            snapshot = None
            if current is not None and current.admits(host_secret, player_id):
                fingerprint = session_fingerprint(current)
                if fingerprint != last_fingerprint:
                    snapshot = await service.find_session(session_id)
        except Exception:
            logger.error("Live feed could not read session %s", session_id, exc_info=True)
            yield {"type": ERROR, "message": "Failed to fetch session"}
            last_sent = clock()
            await asyncio.sleep(poll_interval)
            continue

        if current is None:
            yield {"type": SESSION_NOT_FOUND}
            return
        if not current.admits(host_secret, player_id):
            yield {"type": FORBIDDEN}
            return

        if snapshot is not None:
            last_fingerprint = fingerprint
            yield {"type": SESSION_UPDATE, "session": serialize_session(snapshot)}
            last_sent = clock()
        elif clock() - last_sent >= heartbeat_interval:
            yield {"type": HEARTBEAT}
            last_sent = clock()

        await asyncio.sleep(poll_interval)

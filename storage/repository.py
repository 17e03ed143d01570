"""Session repository: load/save of Session aggregates with a sliding TTL."""

from __future__ import annotations

import asyncio

from models.session import Session, utcnow
from storage.kv import KeyValueStore
from storage.payloads import ImagePayloadStore, PayloadKey


class SessionRepository:
    """Stores one JSON record per session, result images kept separately.

    Every value handed out is an independent copy; changes only reach
    storage through ``save``. There is no locking: concurrent
    load/modify/save cycles on the same session are last-writer-wins.

    Args:
        store: Backing key/value store for session records.
        payloads: Where result images are persisted.
        ttl_seconds: TTL renewed on every save.
        prefix: Key namespace for session records.
    """

    def __init__(
        self,
        store: KeyValueStore,
        payloads: ImagePayloadStore,
        ttl_seconds: int,
        prefix: str = "dx-session:",
    ) -> None:
        self._store = store
        self.payloads = payloads
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    async def load(self, session_id: str, hydrate: bool = True) -> Session | None:
        """Load a session.

        Args:
            session_id: Room code.
            hydrate: Fill ``result_image`` on every entry that has a stored
                payload. The live feed skips this for cheap change checks.

        Returns:
            A fresh Session, or None if no record exists.
        """
        raw = await self._store.get(self._key(session_id))
        if raw is None:
            return None
        session = Session.model_validate_json(raw)
        if hydrate:
            await self._hydrate(session)
        return session

    async def _hydrate(self, session: Session) -> None:
        targets = [
            (entry, PayloadKey(session.id, round_.id, player_id))
            for round_ in session.rounds
            for player_id, entry in round_.entries.items()
        ]
        images = await asyncio.gather(*(self.payloads.get(key) for _, key in targets))
        for (entry, _), image in zip(targets, images):
            if image:
                entry.result_image = image

    async def save(self, session: Session) -> Session:
        """Persist a session and renew its TTL.

        Stamps ``updated_at``, moves every ``result_image`` into the payload
        store (renewing its TTL too), and writes the stripped record.

        Returns:
            A copy of the saved logical state, result images included.
        """
        session.updated_at = utcnow()
        record = session.model_copy(deep=True)
        for round_ in record.rounds:
            for player_id, entry in round_.entries.items():
                if entry.result_image:
                    await self.payloads.put(
                        PayloadKey(session.id, round_.id, player_id),
                        entry.result_image,
                    )
                entry.result_image = None

        await self._store.set(self._key(session.id), record.model_dump_json(), self.ttl_seconds)
        return session.model_copy(deep=True)

    async def exists(self, session_id: str) -> bool:
        """Whether a session record is stored under this room code."""
        return await self._store.exists(self._key(session_id))

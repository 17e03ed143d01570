"""Image payload store: large base64 result images kept out of the session record.

Session records must stay well under the backing store's per-value limit,
so generated images live under their own keys. Callers see a plain
put/get/delete capability; chunking is an implementation detail of
``ChunkedPayloadStore``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import uuid4

from storage.kv import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayloadKey:
    """Identifies one player's result image in one round."""
    session_id: str
    round_id: str
    player_id: str


class ImagePayloadStore(ABC):
    """Keyed blob store with the same TTL as the session it belongs to."""

    @abstractmethod
    async def put(self, key: PayloadKey, payload: str) -> None:
        """Store payload, replacing any previous one."""

    @abstractmethod
    async def get(self, key: PayloadKey) -> str | None:
        """Return the stored payload, or None if there is no complete payload."""

    @abstractmethod
    async def delete(self, key: PayloadKey) -> None:
        """Remove the payload. Safe to call when nothing is stored."""


class ChunkedPayloadStore(ImagePayloadStore):
    """Splits payloads into fixed-size chunks under a metadata record.

    Layout for a key ``<prefix><session>:<round>:<player>``:
        ``...:meta``              ``<generation>:<chunk count>``
        ``...:<gen>:chunk:N``     the Nth slice of that generation's payload

    Every put writes a fresh generation, flips the metadata record to it
    once all of its chunks are stored, and only then deletes the previous
    generation. Existing chunk records are never rewritten, so a reader
    resolves either the old or the new payload in full. A read that loses
    the race with that final cleanup re-reads the metadata and follows the
    new generation.

    Chunks whose metadata is gone (an interrupted put) cannot be located
    and are left to expire with their TTL.

    Args:
        store: Backing key/value store.
        chunk_size: Maximum characters per chunk record.
        ttl_seconds: TTL applied to every record.
        prefix: Key namespace.
    """

    READ_ATTEMPTS = 3

    def __init__(
        self,
        store: KeyValueStore,
        chunk_size: int,
        ttl_seconds: int,
        prefix: str = "dx-image:",
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._store = store
        self.chunk_size = chunk_size
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _base_key(self, key: PayloadKey) -> str:
        return f"{self.prefix}{key.session_id}:{key.round_id}:{key.player_id}"

    @staticmethod
    def _meta_key(base: str) -> str:
        return f"{base}:meta"

    @staticmethod
    def _chunk_key(base: str, generation: str, index: int) -> str:
        return f"{base}:{generation}:chunk:{index}"

    async def _read_meta(self, base: str) -> tuple[str, int] | None:
        """(generation, chunk count) from the metadata record, or None."""
        raw = await self._store.get(self._meta_key(base))
        if raw is None:
            return None
        generation, _, count = raw.partition(":")
        try:
            chunk_count = int(count)
        except ValueError:
            logger.warning("Corrupt payload metadata at %s: %r", base, raw)
            return None
        if not generation or chunk_count <= 0:
            logger.warning("Corrupt payload metadata at %s: %r", base, raw)
            return None
        return generation, chunk_count

    async def _delete_generation(self, base: str, generation: str, count: int) -> None:
        await self._store.delete(*(
            self._chunk_key(base, generation, index) for index in range(count)
        ))

    async def put(self, key: PayloadKey, payload: str) -> None:
        if not payload:
            await self.delete(key)
            return

        base = self._base_key(key)
        previous = await self._read_meta(base)
        generation = uuid4().hex[:12]
        chunks = [
            payload[offset:offset + self.chunk_size]
            for offset in range(0, len(payload), self.chunk_size)
        ]

        await asyncio.gather(*(
            self._store.set(self._chunk_key(base, generation, index), chunk, self.ttl_seconds)
            for index, chunk in enumerate(chunks)
        ))
        await self._store.set(self._meta_key(base), f"{generation}:{len(chunks)}", self.ttl_seconds)

        if previous is not None:
            await self._delete_generation(base, *previous)

    async def get(self, key: PayloadKey) -> str | None:
        base = self._base_key(key)
        meta = await self._read_meta(base)
        for _ in range(self.READ_ATTEMPTS):
            if meta is None:
                return None
            generation, count = meta
            chunks = await asyncio.gather(*(
                self._store.get(self._chunk_key(base, generation, index)) for index in range(count)
            ))
            if all(chunk is not None for chunk in chunks):
                return "".join(chunks)

            # A concurrent put may have replaced this generation mid-read
            current = await self._read_meta(base)
            if current == meta:
                break
            meta = current

        logger.warning("Payload %s is missing chunks; treating as absent", base)
        return None

    async def delete(self, key: PayloadKey) -> None:
        base = self._base_key(key)
        meta = await self._read_meta(base)
        await self._store.delete(self._meta_key(base))
        if meta is not None:
            await self._delete_generation(base, *meta)

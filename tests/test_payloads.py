"""Tests for the key/value stores and the chunked image payload store."""

import asyncio

import pytest

from storage.kv import MemoryStore
from storage.payloads import ChunkedPayloadStore, PayloadKey

KEY = PayloadKey("ABCDEF", "round-1", "player-1")
BASE = "dx-image:ABCDEF:round-1:player-1"
META = f"{BASE}:meta"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _make_store(chunk_size: int = 4, ttl: int = 60, clock=None) -> tuple[MemoryStore, ChunkedPayloadStore]:
    kv = MemoryStore(clock=clock) if clock else MemoryStore()
    return kv, ChunkedPayloadStore(kv, chunk_size=chunk_size, ttl_seconds=ttl)


async def _chunk_key(kv: MemoryStore, index: int) -> str:
    """Backing key of a chunk in the generation the metadata points at."""
    generation = (await kv.get(META)).split(":")[0]
    return f"{BASE}:{generation}:chunk:{index}"


class SlowChunkStore(MemoryStore):
    """Writes every chunk after the first slowly and yields on every read."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        if ":chunk:" in key and not key.endswith(":chunk:0"):
            await asyncio.sleep(0.01)
        await super().set(key, value, ttl_seconds)

    async def get(self, key: str) -> str | None:
        await asyncio.sleep(0)
        return await super().get(key)


class TestMemoryStore:
    """Tests for MemoryStore."""

    def test_set_get_delete(self):
        async def scenario():
            kv = MemoryStore()
            await kv.set("a", "1", 10)
            assert await kv.get("a") == "1"
            assert await kv.exists("a")
            await kv.delete("a", "missing")
            assert await kv.get("a") is None

        asyncio.run(scenario())

    def test_expiry(self):
        async def scenario():
            clock = FakeClock()
            kv = MemoryStore(clock=clock)
            await kv.set("a", "1", 10)
            clock.now = 9.9
            assert await kv.get("a") == "1"
            clock.now = 10.0
            assert await kv.get("a") is None
            assert len(kv) == 0

        asyncio.run(scenario())


class TestChunkedPayloadStore:
    """Tests for ChunkedPayloadStore."""

    def test_put_get_across_chunks(self):
        async def scenario():
            kv, store = _make_store(chunk_size=4)
            await store.put(KEY, "abcdefghij")
            assert await store.get(KEY) == "abcdefghij"
            # 3 chunks + meta
            assert len(kv) == 4
            generation, count = (await kv.get(META)).split(":")
            assert count == "3"
            assert await kv.get(f"{BASE}:{generation}:chunk:2") == "ij"

        asyncio.run(scenario())

    def test_exact_multiple_of_chunk_size(self):
        async def scenario():
            kv, store = _make_store(chunk_size=5)
            await store.put(KEY, "abcdefghij")
            assert await store.get(KEY) == "abcdefghij"
            assert len(kv) == 3

        asyncio.run(scenario())

    def test_shrinking_payload_leaves_no_residue(self):
        async def scenario():
            kv, store = _make_store(chunk_size=2)
            await store.put(KEY, "abcdefgh")
            old_chunk = await _chunk_key(kv, 2)
            await store.put(KEY, "xyz")
            assert await store.get(KEY) == "xyz"
            assert len(kv) == 3
            assert await kv.get(old_chunk) is None

        asyncio.run(scenario())

    def test_missing_chunk_reads_as_absent(self):
        async def scenario():
            kv, store = _make_store(chunk_size=2)
            await store.put(KEY, "abcdef")
            await kv.delete(await _chunk_key(kv, 1))
            assert await store.get(KEY) is None

        asyncio.run(scenario())

    def test_corrupt_meta_reads_as_absent(self):
        async def scenario():
            kv, store = _make_store()
            await store.put(KEY, "abcdef")
            await kv.set(META, "lots", 60)
            assert await store.get(KEY) is None

        asyncio.run(scenario())

    def test_absent_key(self):
        async def scenario():
            _, store = _make_store()
            assert await store.get(KEY) is None

        asyncio.run(scenario())

    def test_delete_is_idempotent(self):
        async def scenario():
            kv, store = _make_store()
            await store.put(KEY, "abcdefgh")
            await store.delete(KEY)
            await store.delete(KEY)
            assert await store.get(KEY) is None
            assert len(kv) == 0

        asyncio.run(scenario())

    def test_delete_without_meta_is_harmless(self):
        async def scenario():
            kv, store = _make_store(chunk_size=2)
            await store.put(KEY, "abcdef")
            await kv.delete(META)
            await store.delete(KEY)
            assert await store.get(KEY) is None

        asyncio.run(scenario())

    def test_empty_payload_deletes(self):
        async def scenario():
            kv, store = _make_store()
            await store.put(KEY, "abcdef")
            await store.put(KEY, "")
            assert await store.get(KEY) is None
            assert len(kv) == 0

        asyncio.run(scenario())

    def test_keys_are_isolated(self):
        async def scenario():
            _, store = _make_store()
            other = PayloadKey("ABCDEF", "round-1", "player-2")
            await store.put(KEY, "first")
            await store.put(other, "second")
            assert await store.get(KEY) == "first"
            assert await store.get(other) == "second"

        asyncio.run(scenario())

    def test_payload_expires_with_ttl(self):
        async def scenario():
            clock = FakeClock()
            _, store = _make_store(ttl=100, clock=clock)
            await store.put(KEY, "abcdefgh")
            clock.now = 101
            assert await store.get(KEY) is None

        asyncio.run(scenario())

    def test_rejects_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            ChunkedPayloadStore(MemoryStore(), chunk_size=0, ttl_seconds=60)

    def test_reads_during_overwrite_see_old_or_new_payload(self):
        async def scenario():
            kv = SlowChunkStore()
            store = ChunkedPayloadStore(kv, chunk_size=4, ttl_seconds=60)
            await store.put(KEY, "AAAABBBBCCCC")
            reads = []
            writing = True

            async def writer():
                nonlocal writing
                await store.put(KEY, "xxxxyyyyzzzz")
                writing = False

            async def reader():
                while writing:
                    reads.append(await store.get(KEY))
                    await asyncio.sleep(0.001)

            await asyncio.gather(writer(), reader())

            assert reads
            assert set(reads) <= {"AAAABBBBCCCC", "xxxxyyyyzzzz"}
            assert await store.get(KEY) == "xxxxyyyyzzzz"
            # Old generation is gone: 3 new chunks + meta
            assert len(kv) == 4

        asyncio.run(scenario())

    def test_overwrite_never_rewrites_existing_chunk_records(self):
        async def scenario():
            kv, store = _make_store(chunk_size=4)
            await store.put(KEY, "AAAABBBB")
            first = await _chunk_key(kv, 0)
            await store.put(KEY, "CCCCDDDD")
            assert await _chunk_key(kv, 0) != first
            assert await kv.get(first) is None

        asyncio.run(scenario())

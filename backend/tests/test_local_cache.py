"""
Serve Tracker Backend — Local Cache Tests
===========================================

What we test:
    ✅ Namespaces are independent and start empty
    ✅ append() replaces an entry with the same id instead of duplicating it
    ✅ Concurrent appends are serialized (none lost)
    ✅ replace() and remove()
"""

import asyncio

import pytest

from serve_tracker.schemas.serve_attempt import CachedRecord


def _record(record_id: str, **fields) -> CachedRecord:
    return CachedRecord(id=record_id, **fields)


class TestLocalCache:

    @pytest.mark.asyncio
    async def test_unknown_namespace_reads_empty(self, local_cache):
        assert await local_cache.read("nothing-here") == []

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, local_cache):
        await local_cache.append("pending", _record("a", client_id="c1", image_url="https://x/a"))

        records = await local_cache.read("pending")

        assert [r.id for r in records] == ["a"]
        assert records[0].client_id == "c1"
        assert records[0].image_url == "https://x/a"

    @pytest.mark.asyncio
    async def test_append_same_id_replaces(self, local_cache):
        await local_cache.append("pending", _record("a", notes="first"))
        count = await local_cache.append("pending", _record("a", notes="second"))

        assert count == 1
        assert (await local_cache.read("pending"))[0].notes == "second"

    @pytest.mark.asyncio
    async def test_namespaces_are_independent(self, local_cache):
        await local_cache.append("one", _record("a"))
        await local_cache.replace("two", [_record("b"), _record("c")])

        assert [r.id for r in await local_cache.read("one")] == ["a"]
        assert [r.id for r in await local_cache.read("two")] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_all_kept(self, local_cache):
        await asyncio.gather(*(local_cache.append("pending", _record(f"r{i}")) for i in range(10)))

        ids = {r.id for r in await local_cache.read("pending")}
        assert ids == {f"r{i}" for i in range(10)}

    @pytest.mark.asyncio
    async def test_replace_overwrites_wholesale(self, local_cache):
        await local_cache.replace("serves", [_record("a"), _record("b")])
        size = await local_cache.replace("serves", [_record("c")])

        assert [r.id for r in await local_cache.read("serves")] == ["c"]
        assert size > 0

    @pytest.mark.asyncio
    async def test_remove(self, local_cache):
        await local_cache.replace("pending", [_record("a"), _record("b"), _record("c")])

        removed = await local_cache.remove("pending", ["a", "c", "missing"])

        assert removed == 2
        assert [r.id for r in await local_cache.read("pending")] == ["b"]

    @pytest.mark.asyncio
    async def test_ping(self, local_cache):
        assert await local_cache.ping() is True

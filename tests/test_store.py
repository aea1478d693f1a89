"""Tests for the filesystem object store."""

from __future__ import annotations

import pytest

from oncelink.server.store import FilesystemObjectStore, ObjectStore


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class Boom(Exception):
    pass


async def _failing_body():
    yield b"partial"
    raise Boom


class TestFilesystemObjectStore:
    def test_satisfies_protocol(self, store):
        assert isinstance(store, ObjectStore)

    def test_creates_layout(self, tmp_path):
        FilesystemObjectStore(tmp_path / "new")
        assert (tmp_path / "new" / "data").is_dir()
        assert (tmp_path / "new" / "meta").is_dir()
        assert (tmp_path / "new" / "tmp").is_dir()

    @pytest.mark.asyncio
    async def test_put_get_bytes(self, store):
        written = await store.put("k1", b"hello", {"name": "h.txt"})
        assert written == 5

        obj = await store.get("k1")
        assert obj is not None
        assert obj.size == 5
        assert obj.metadata == {"name": "h.txt"}
        assert b"".join([c async for c in obj.iter_chunks()]) == b"hello"

    @pytest.mark.asyncio
    async def test_put_streams_async_iterable(self, store):
        written = await store.put("k2", _chunks(b"ab", b"cd", b"e"))
        assert written == 5
        obj = await store.get("k2")
        assert b"".join([c async for c in obj.iter_chunks(chunk_size=2)]) == b"abcde"

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nope") is None
        assert await store.head("nope") is None

    @pytest.mark.asyncio
    async def test_head_returns_metadata(self, store):
        await store.put("k3", b"x", {"createdAt": "123"})
        assert await store.head("k3") == {"createdAt": "123"}

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("k4", b"x", {"a": "b"})
        await store.delete("k4")
        assert await store.get("k4") is None
        assert not (store.meta_dir / "k4.json").exists()
        # Deleting again is harmless.
        await store.delete("k4")

    @pytest.mark.asyncio
    async def test_failed_put_leaves_nothing(self, store):
        with pytest.raises(Boom):
            await store.put("k5", _failing_body(), {"a": "b"})
        assert await store.get("k5") is None
        assert list(store.tmp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_put_keeps_previous_object(self, store):
        await store.put("k6", b"original")
        with pytest.raises(Boom):
            await store.put("k6", _failing_body())
        obj = await store.get("k6")
        assert b"".join([c async for c in obj.iter_chunks()]) == b"original"

    @pytest.mark.asyncio
    async def test_open_object_survives_delete(self, store):
        await store.put("k7", b"still here")
        obj = await store.get("k7")
        await store.delete("k7")
        assert b"".join([c async for c in obj.iter_chunks()]) == b"still here"

    @pytest.mark.asyncio
    async def test_list_keys(self, store):
        await store.put("b", b"1")
        await store.put("a.stub", b"1")
        assert await store.list_keys() == ["a.stub", "b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../x", "a/b", ".hidden", ""])
    async def test_rejects_unsafe_keys(self, store, key):
        with pytest.raises(ValueError):
            await store.put(key, b"x")

    @pytest.mark.asyncio
    async def test_corrupt_metadata_raises_oserror(self, store, storage_dir):
        await store.put("k8", b"body", {"name": "n.txt"})
        (storage_dir / "meta" / "k8.json").write_text("{not json")
        with pytest.raises(OSError):
            await store.head("k8")
        with pytest.raises(OSError):
            await store.get("k8")

"""Tests for the filesystem blob store."""

from __future__ import annotations

import pytest

from src.providers.blob_store.filesystem_blob_store import FilesystemBlobStore


@pytest.fixture
def store(tmp_path) -> FilesystemBlobStore:
    return FilesystemBlobStore(tmp_path / "blobs")


class TestFilesystemBlobStore:
    @pytest.mark.asyncio
    async def test_put_get_roundtrip(self, store, tmp_path) -> None:
        await store.put("transcripts/mtg-001.txt", b"[00:00] Alice: Hello")
        assert await store.get("transcripts/mtg-001.txt") == b"[00:00] Alice: Hello"
        assert (tmp_path / "blobs" / "transcripts" / "mtg-001.txt").is_file()
        assert not list((tmp_path / "blobs" / "transcripts").glob(".*.tmp"))

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store) -> None:
        await store.put("a.txt", b"one")
        await store.put("a.txt", b"two")
        assert await store.get("a.txt") == b"two"

    @pytest.mark.asyncio
    async def test_missing_key(self, store) -> None:
        assert await store.get("nope.txt") is None
        assert await store.exists("nope.txt") is False
        assert await store.delete("nope.txt") is False

    @pytest.mark.asyncio
    async def test_delete(self, store) -> None:
        await store.put("a.txt", b"x")
        assert await store.exists("a.txt") is True
        assert await store.delete("a.txt") is True
        assert await store.exists("a.txt") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside.txt", "a/../../outside.txt"])
    async def test_keys_escaping_root_rejected(self, store, key) -> None:
        with pytest.raises(ValueError):
            await store.put(key, b"x")

    @pytest.mark.asyncio
    async def test_list_keys_by_prefix(self, store) -> None:
        await store.put("transcripts/b.txt", b"b")
        await store.put("transcripts/a.txt", b"a")
        await store.put("archive/a.json", b"{}")
        assert await store.list_keys("transcripts/") == ["transcripts/a.txt", "transcripts/b.txt"]
        assert await store.list_keys() == ["archive/a.json", "transcripts/a.txt", "transcripts/b.txt"]

    @pytest.mark.asyncio
    async def test_list_keys_empty_store(self, store) -> None:
        assert await store.list_keys() == []

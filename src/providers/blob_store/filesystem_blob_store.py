"""Filesystem-backed blob store.

Each key maps to one file under a root directory (``transcripts/abc.txt``
becomes ``<root>/transcripts/abc.txt``).  Writes go to a temporary file
that is renamed into place, so a crash never leaves a half-written blob.
Blocking file I/O runs via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import structlog

from src.interfaces.blob_store import IBlobStore

logger = structlog.get_logger(logger_name=__name__)


class FilesystemBlobStore(IBlobStore):
    """Stores blobs as files below *root*."""

    def __init__(self, root: str | Path = "data/blobs") -> None:
        self._root = Path(root).resolve()

    # ------------------------------------------------------------------
    # IBlobStore implementation
    # ------------------------------------------------------------------

    async def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write_sync, path, data)
        logger.debug("blob_stored", key=key, size=len(data))

    async def get(self, key: str) -> bytes | None:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None

    async def delete(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).is_file)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _path_for(self, key: str) -> Path:
        """Resolve *key* below the root, rejecting keys that escape it."""
        if not key or key.startswith("/"):
            raise ValueError(f"Invalid blob key: {key!r}")
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise ValueError(f"Blob key escapes the store root: {key!r}")
        return path

    def _list_sync(self, prefix: str) -> list[str]:
        if not self._root.is_dir():
            return []
        keys = []
        for path in self._root.rglob("*"):
            # Skip in-flight temporary files from _write_sync.
            if not path.is_file() or path.name.startswith("."):
                continue
            key = path.relative_to(self._root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    @staticmethod
    def _write_sync(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

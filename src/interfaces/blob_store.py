"""Abstract base class for raw-content blob storage.

Transcripts and documents are stored verbatim under string keys such as
``transcripts/<id>.txt`` before segmentation, so a document can be
re-processed later without contacting the transcript source again.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   FilesystemBlobStore -- one file per key under a root directory
# Located in: src/providers/blob_store/
class IBlobStore(ABC):
    """Contract for key/bytes storage."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Store *data* under *key*, replacing any previous value."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the bytes stored under *key*, or ``None`` if absent."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove *key*; return ``True`` if something was deleted."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* holds a value."""

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return the sorted keys that start with *prefix*."""

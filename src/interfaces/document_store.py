"""Abstract base class for the relational document/chunk store.

Defines the persistence contract the orchestrator and the search engine
need: documents with their ingestion bookkeeping, chunk sets with
relationships and entities, the webhook event log and a small key/value
table for system metadata.  Embeddings are persisted as opaque float32
blobs; decoding is the caller's concern.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from src.models.pipeline import Document
from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkRelationship,
    FilterOptions,
    RelationshipType,
    SearchFilters,
)


# Concrete implementations:
#   SQLiteDocumentStore -- aiosqlite, single database file
# Located in: src/providers/store/
class IDocumentStore(ABC):
    """Contract for document, chunk and bookkeeping persistence.

    All operations are async so network-backed stores can be swapped in.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    # -- Documents ---------------------------------------------------------

    @abstractmethod
    async def upsert_document(self, document: Document) -> None:
        """Insert *document* or overwrite the stored row with the same id."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document, or ``None`` if it is unknown."""

    @abstractmethod
    async def list_unprocessed(self, limit: int) -> list[Document]:
        """Return up to *limit* documents with ``processed=False``, oldest first."""

    # -- Chunks ------------------------------------------------------------

    @abstractmethod
    async def replace_chunks(
        self,
        document: Document,
        chunks: list[Chunk],
        relationships: list[ChunkRelationship],
    ) -> None:
        """Atomically swap the document's chunk set and save *document*.

        Existing chunks, relationships and entities of the document are
        deleted and the new ones inserted in one transaction together with
        the updated document row, so readers see either the old set or the
        new one.
        """

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return the document's chunks ordered by position."""

    @abstractmethod
    async def get_related_chunks(
        self,
        chunk_id: str,
        relationship_types: list[RelationshipType],
    ) -> list[tuple[ChunkRelationship, Chunk]]:
        """Return chunks linked to *chunk_id* in either direction."""

    # -- Retrieval ---------------------------------------------------------

    @abstractmethod
    async def find_candidates(
        self,
        filters: SearchFilters,
        limit: int,
    ) -> list[ChunkCandidate]:
        """Return embedded chunks matching *filters*, newest document first."""

    @abstractmethod
    async def text_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[ChunkCandidate]:
        """Return chunks whose content contains *query* (case-insensitive)."""

    @abstractmethod
    async def get_filter_options(self, speaker_limit: int = 50) -> FilterOptions:
        """Return the distinct values usable in :class:`SearchFilters`."""

    @abstractmethod
    async def suggest_terms(self, prefix: str, limit: int) -> list[str]:
        """Return tags and topics starting with *prefix*."""

    # -- Bookkeeping -------------------------------------------------------

    @abstractmethod
    async def log_webhook_event(
        self,
        event_type: str,
        document_id: str | None,
        payload: dict[str, Any],
        processed: bool,
        error: str | None = None,
        received_at: datetime | None = None,
    ) -> None:
        """Append one entry to the webhook event log."""

    @abstractmethod
    async def purge_webhook_events(self, older_than: datetime) -> int:
        """Delete webhook events received before *older_than*; return the count."""

    @abstractmethod
    async def set_metadata(self, key: str, value: str) -> None:
        """Store a system metadata value."""

    @abstractmethod
    async def get_metadata(self, key: str) -> str | None:
        """Return a system metadata value, or ``None``."""

    @abstractmethod
    async def get_corpus_counts(self) -> dict[str, int]:
        """Return ``total_documents``, ``processed_documents``,
        ``total_chunks`` and ``embedded_chunks``."""

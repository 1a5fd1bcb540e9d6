"""SQLite-backed document and chunk store.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapter implementing IDocumentStore).
#
# Database: ``data/transcripts.db`` -- documents, chunks (with float32
# embedding blobs), chunk relationships, extracted entities, the webhook
# event log and a key/value system metadata table.
#
# A document's chunk set is replaced in a single transaction (delete the
# old rows, insert the new ones, update the document row), so a reader
# never sees a half-written set and re-processing never duplicates rows.
#
# Uses ``aiosqlite`` for async I/O and ``PRAGMA journal_mode=WAL`` for
# concurrent read safety.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import ValidationError

from src.interfaces.document_store import IDocumentStore
from src.models.entities import EntityType, ExtractedEntity
from src.models.pipeline import Document, DocumentStage
from src.models.rag import (
    Chunk,
    ChunkCandidate,
    ChunkRelationship,
    ChunkType,
    FilterOptions,
    RelationshipType,
    SearchFilters,
)
from src.providers.store.sqlite_common import from_db_time, to_db_time
from src.utils.errors import EmbeddingCodecError, RAGError
from src.utils.vector_codec import decode_vector, encode_vector

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/transcripts.db")
_PROVIDER = "sqlite"

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_DOCUMENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS documents (
    document_id       TEXT PRIMARY KEY,
    title             TEXT NOT NULL DEFAULT '',
    source_date       TEXT,
    content_key       TEXT NOT NULL DEFAULT '',
    word_count        INTEGER NOT NULL DEFAULT 0,
    processed         INTEGER NOT NULL DEFAULT 0,
    chunk_count       INTEGER NOT NULL DEFAULT 0,
    last_processed_at TEXT,
    stage             TEXT NOT NULL DEFAULT 'new',
    category          TEXT NOT NULL DEFAULT 'general',
    project           TEXT,
    department        TEXT,
    participants      TEXT NOT NULL DEFAULT '[]',
    tags              TEXT NOT NULL DEFAULT '[]',
    duration_seconds  REAL,
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id          TEXT PRIMARY KEY,
    document_id       TEXT NOT NULL REFERENCES documents(document_id),
    position          INTEGER NOT NULL,
    chunk_type        TEXT NOT NULL,
    content           TEXT NOT NULL,
    speaker           TEXT,
    start_time        REAL,
    end_time          REAL,
    token_count       INTEGER NOT NULL DEFAULT 0,
    importance        REAL NOT NULL DEFAULT 0.5,
    sentiment         REAL NOT NULL DEFAULT 0.0,
    topics            TEXT NOT NULL DEFAULT '[]',
    embedding         BLOB,
    embedding_model   TEXT,
    previous_chunk_id TEXT,
    next_chunk_id     TEXT,
    parent_chunk_id   TEXT,
    UNIQUE(document_id, position)
);
"""

_CREATE_RELATIONSHIPS_TABLE = """\
CREATE TABLE IF NOT EXISTS chunk_relationships (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id       TEXT NOT NULL,
    source_chunk_id   TEXT NOT NULL,
    target_chunk_id   TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    strength          REAL NOT NULL DEFAULT 1.0
);
"""

_CREATE_ENTITIES_TABLE = """\
CREATE TABLE IF NOT EXISTS extracted_entities (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL,
    chunk_id    TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    value       TEXT NOT NULL,
    confidence  REAL NOT NULL,
    char_offset INTEGER NOT NULL DEFAULT 0,
    metadata    TEXT NOT NULL DEFAULT '{}',
    context     TEXT NOT NULL DEFAULT ''
);
"""

_CREATE_WEBHOOK_EVENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS webhook_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type  TEXT NOT NULL,
    document_id TEXT,
    payload     TEXT NOT NULL,
    processed   INTEGER NOT NULL DEFAULT 0,
    error       TEXT,
    received_at TEXT NOT NULL
);
"""

_CREATE_METADATA_TABLE = """\
CREATE TABLE IF NOT EXISTS system_metadata (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_documents_processed ON documents(processed);",
    "CREATE INDEX IF NOT EXISTS idx_documents_date ON documents(source_date);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_type ON chunks(chunk_type);",
    "CREATE INDEX IF NOT EXISTS idx_rel_source ON chunk_relationships(source_chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_rel_target ON chunk_relationships(target_chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_rel_document ON chunk_relationships(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_entities_chunk ON extracted_entities(chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_webhook_received ON webhook_events(received_at);",
]

# ── DML ───────────────────────────────────────────────────────────────

_UPSERT_DOCUMENT = """\
INSERT INTO documents (document_id, title, source_date, content_key, word_count,
                       processed, chunk_count, last_processed_at, stage, category,
                       project, department, participants, tags, duration_seconds)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(document_id)
DO UPDATE SET title = excluded.title,
              source_date = excluded.source_date,
              content_key = excluded.content_key,
              word_count = excluded.word_count,
              processed = excluded.processed,
              chunk_count = excluded.chunk_count,
              last_processed_at = excluded.last_processed_at,
              stage = excluded.stage,
              category = excluded.category,
              project = excluded.project,
              department = excluded.department,
              participants = excluded.participants,
              tags = excluded.tags,
              duration_seconds = excluded.duration_seconds;
"""

_INSERT_CHUNK = """\
INSERT INTO chunks (chunk_id, document_id, position, chunk_type, content, speaker,
                    start_time, end_time, token_count, importance, sentiment, topics,
                    embedding, embedding_model, previous_chunk_id, next_chunk_id,
                    parent_chunk_id)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_RELATIONSHIP = """\
INSERT INTO chunk_relationships (document_id, source_chunk_id, target_chunk_id,
                                 relationship_type, strength)
VALUES (?, ?, ?, ?, ?);
"""

_INSERT_ENTITY = """\
INSERT INTO extracted_entities (document_id, chunk_id, entity_type, value,
                                confidence, char_offset, metadata, context)
VALUES (?, ?, ?, ?, ?, ?, ?, ?);
"""

_CHUNK_COLUMNS = """\
c.chunk_id, c.document_id, c.position, c.chunk_type, c.content, c.speaker,
c.start_time, c.end_time, c.token_count, c.importance, c.sentiment, c.topics,
c.embedding, c.embedding_model, c.previous_chunk_id, c.next_chunk_id,
c.parent_chunk_id"""

_CANDIDATE_SELECT = f"""\
SELECT {_CHUNK_COLUMNS},
       d.title AS document_title, d.source_date AS document_date,
       d.category AS document_category, d.project AS document_project,
       d.department AS document_department
FROM chunks c
JOIN documents d ON d.document_id = c.document_id"""


class SQLiteDocumentStore(IDocumentStore):
    """SQLite-backed persistence for documents, chunks and bookkeeping."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create all tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            for ddl in (
                _CREATE_DOCUMENTS_TABLE,
                _CREATE_CHUNKS_TABLE,
                _CREATE_RELATIONSHIPS_TABLE,
                _CREATE_ENTITIES_TABLE,
                _CREATE_WEBHOOK_EVENTS_TABLE,
                _CREATE_METADATA_TABLE,
            ):
                await db.execute(ddl)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("document_store_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite_document_store"

    # ── Documents ──────────────────────────────────────────────────────

    async def upsert_document(self, document: Document) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_DOCUMENT, _document_params(document))
            await db.commit()

    async def get_document(self, document_id: str) -> Document | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM documents WHERE document_id = ?", (document_id,)
            )
            row = await cursor.fetchone()
        return _row_to_document(dict(row)) if row else None

    async def list_unprocessed(self, limit: int) -> list[Document]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM documents WHERE processed = 0 "
                "ORDER BY created_at ASC, document_id ASC LIMIT ?",
                (limit,),
            )
            rows = await cursor.fetchall()
        return [_row_to_document(dict(r)) for r in rows]

    # ── Chunks ─────────────────────────────────────────────────────────

    async def replace_chunks(
        self,
        document: Document,
        chunks: list[Chunk],
        relationships: list[ChunkRelationship],
    ) -> None:
        """Swap the document's chunk set and save *document* in one transaction."""
        doc_id = document.document_id
        foreign = [c.chunk_id for c in chunks if c.document_id != doc_id]
        if foreign:
            raise RAGError(
                message=f"Chunks {foreign[:3]} do not belong to document {doc_id}",
                provider_name=_PROVIDER,
            )

        async with aiosqlite.connect(str(self._db_path)) as db:
            try:
                await db.execute("DELETE FROM extracted_entities WHERE document_id = ?", (doc_id,))
                await db.execute("DELETE FROM chunk_relationships WHERE document_id = ?", (doc_id,))
                await db.execute("DELETE FROM chunks WHERE document_id = ?", (doc_id,))
                await db.executemany(_INSERT_CHUNK, [_chunk_params(c) for c in chunks])
                await db.executemany(
                    _INSERT_RELATIONSHIP,
                    [
                        (
                            doc_id,
                            r.source_chunk_id,
                            r.target_chunk_id,
                            r.relationship_type.value,
                            r.strength,
                        )
                        for r in relationships
                    ],
                )
                await db.executemany(
                    _INSERT_ENTITY,
                    [
                        (
                            doc_id,
                            chunk.chunk_id,
                            e.entity_type.value,
                            e.value,
                            e.confidence,
                            e.offset,
                            json.dumps(e.metadata),
                            e.context,
                        )
                        for chunk in chunks
                        for e in chunk.entities
                    ],
                )
                await db.execute(_UPSERT_DOCUMENT, _document_params(document))
                await db.commit()
            except aiosqlite.Error as exc:
                await db.rollback()
                raise RAGError(
                    message=f"Failed to store chunks for {doc_id}: {exc}",
                    provider_name=_PROVIDER,
                ) from exc

        logger.info(
            "chunks_replaced",
            document_id=doc_id,
            chunks=len(chunks),
            relationships=len(relationships),
            embedded=sum(1 for c in chunks if c.is_embedded),
        )

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.document_id = ? ORDER BY c.position",
                (document_id,),
            )
            rows = [dict(r) for r in await cursor.fetchall()]
            entities = await self._entities_by_chunk(db, document_id)

        return [
            _row_to_chunk(row, entities.get(row["chunk_id"], []), decode_embedding=True)
            for row in rows
        ]

    async def get_related_chunks(
        self,
        chunk_id: str,
        relationship_types: list[RelationshipType],
    ) -> list[tuple[ChunkRelationship, Chunk]]:
        if not relationship_types:
            return []
        placeholders = ", ".join("?" for _ in relationship_types)
        query = f"""\
            SELECT r.source_chunk_id AS rel_source, r.target_chunk_id AS rel_target,
                   r.relationship_type AS rel_type, r.strength AS rel_strength,
                   {_CHUNK_COLUMNS}
            FROM chunk_relationships r
            JOIN chunks c ON c.chunk_id = CASE WHEN r.source_chunk_id = ?
                                               THEN r.target_chunk_id
                                               ELSE r.source_chunk_id END
            WHERE (r.source_chunk_id = ? OR r.target_chunk_id = ?)
              AND r.relationship_type IN ({placeholders})
            ORDER BY c.position;
        """
        params = [chunk_id, chunk_id, chunk_id, *(t.value for t in relationship_types)]
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = [dict(r) for r in await cursor.fetchall()]

        related: list[tuple[ChunkRelationship, Chunk]] = []
        for row in rows:
            relationship = ChunkRelationship(
                source_chunk_id=row["rel_source"],
                target_chunk_id=row["rel_target"],
                relationship_type=RelationshipType(row["rel_type"]),
                strength=row["rel_strength"],
            )
            chunk = _candidate_chunk(row)
            if chunk is not None:
                related.append((relationship, chunk))
        return related

    # ── Retrieval ──────────────────────────────────────────────────────

    async def find_candidates(self, filters: SearchFilters, limit: int) -> list[ChunkCandidate]:
        conditions, params = _filter_conditions(filters)
        conditions.insert(0, "c.embedding IS NOT NULL")
        query = (
            f"{_CANDIDATE_SELECT}\nWHERE {' AND '.join(conditions)}\n"
            "ORDER BY d.source_date DESC, c.document_id ASC, c.position ASC\nLIMIT ?;"
        )
        return await self._fetch_candidates(query, [*params, limit])

    async def text_search(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
    ) -> list[ChunkCandidate]:
        conditions, params = _filter_conditions(filters)
        conditions.insert(0, "c.content LIKE ? ESCAPE '\\'")
        params.insert(0, f"%{_escape_like(query)}%")
        sql = (
            f"{_CANDIDATE_SELECT}\nWHERE {' AND '.join(conditions)}\n"
            "ORDER BY d.source_date DESC, c.document_id ASC, c.position ASC\nLIMIT ?;"
        )
        return await self._fetch_candidates(sql, [*params, limit])

    async def get_filter_options(self, speaker_limit: int = 50) -> FilterOptions:
        async with aiosqlite.connect(str(self._db_path)) as db:
            categories = await _distinct(db, "SELECT DISTINCT category FROM documents WHERE category IS NOT NULL ORDER BY category")
            projects = await _distinct(db, "SELECT DISTINCT project FROM documents WHERE project IS NOT NULL ORDER BY project")
            departments = await _distinct(
                db, "SELECT DISTINCT department FROM documents WHERE department IS NOT NULL ORDER BY department"
            )
            speakers = await _distinct(
                db,
                "SELECT DISTINCT speaker FROM chunks WHERE speaker IS NOT NULL ORDER BY speaker LIMIT ?",
                (speaker_limit,),
            )
        return FilterOptions(
            categories=categories,
            projects=projects,
            departments=departments,
            speakers=speakers,
        )

    async def suggest_terms(self, prefix: str, limit: int) -> list[str]:
        pattern = f"{_escape_like(prefix.lower())}%"
        query = """\
            SELECT term FROM (
                SELECT lower(j.value) AS term FROM documents d,
                    json_each(CASE WHEN json_valid(d.tags) THEN d.tags ELSE '[]' END) j
                UNION ALL
                SELECT lower(j.value) AS term FROM chunks c,
                    json_each(CASE WHEN json_valid(c.topics) THEN c.topics ELSE '[]' END) j
            )
            WHERE term LIKE ? ESCAPE '\\'
            GROUP BY term
            ORDER BY COUNT(*) DESC, term ASC
            LIMIT ?;
        """
        async with aiosqlite.connect(str(self._db_path)) as db:
            return await _distinct(db, query, (pattern, limit))

    # ── Bookkeeping ────────────────────────────────────────────────────

    async def log_webhook_event(
        self,
        event_type: str,
        document_id: str | None,
        payload: dict[str, Any],
        processed: bool,
        error: str | None = None,
        received_at: datetime | None = None,
    ) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT INTO webhook_events (event_type, document_id, payload, processed, error, received_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    event_type,
                    document_id,
                    json.dumps(payload, default=str),
                    int(processed),
                    error,
                    to_db_time(received_at or datetime.now().astimezone()),
                ),
            )
            await db.commit()

    async def purge_webhook_events(self, older_than: datetime) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "DELETE FROM webhook_events WHERE received_at < ?", (to_db_time(older_than),)
            )
            await db.commit()
            return cursor.rowcount

    async def set_metadata(self, key: str, value: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT INTO system_metadata (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')",
                (key, value),
            )
            await db.commit()

    async def get_metadata(self, key: str) -> str | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("SELECT value FROM system_metadata WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return row[0] if row else None

    async def get_corpus_counts(self) -> dict[str, int]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT COUNT(*) AS total_documents, "
                "COALESCE(SUM(processed), 0) AS processed_documents FROM documents"
            )
            docs = dict(await cursor.fetchone())
            cursor = await db.execute(
                "SELECT COUNT(*) AS total_chunks, "
                "COALESCE(SUM(CASE WHEN embedding IS NOT NULL THEN 1 ELSE 0 END), 0) AS embedded_chunks "
                "FROM chunks"
            )
            chunks = dict(await cursor.fetchone())
        return {**docs, **chunks}

    # ── Private helpers ────────────────────────────────────────────────

    async def _fetch_candidates(self, query: str, params: list[Any]) -> list[ChunkCandidate]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = [dict(r) for r in await cursor.fetchall()]

        candidates: list[ChunkCandidate] = []
        for row in rows:
            chunk = _candidate_chunk(row)
            if chunk is None:
                continue
            candidates.append(
                ChunkCandidate(
                    chunk=chunk,
                    embedding_blob=row["embedding"],
                    document_title=row["document_title"] or "",
                    document_date=from_db_time(row["document_date"]),
                    category=row["document_category"],
                    project=row["document_project"],
                    department=row["document_department"],
                )
            )
        return candidates

    @staticmethod
    async def _entities_by_chunk(
        db: aiosqlite.Connection,
        document_id: str,
    ) -> dict[str, list[ExtractedEntity]]:
        cursor = await db.execute(
            "SELECT chunk_id, entity_type, value, confidence, char_offset, metadata, context "
            "FROM extracted_entities WHERE document_id = ? ORDER BY id",
            (document_id,),
        )
        grouped: dict[str, list[ExtractedEntity]] = {}
        for row in await cursor.fetchall():
            r = dict(row)
            grouped.setdefault(r["chunk_id"], []).append(
                ExtractedEntity(
                    entity_type=EntityType(r["entity_type"]),
                    value=r["value"],
                    confidence=r["confidence"],
                    chunk_id=r["chunk_id"],
                    offset=r["char_offset"],
                    metadata=json.loads(r["metadata"]),
                    context=r["context"],
                )
            )
        return grouped


# ── Row mapping ────────────────────────────────────────────────────────

def _document_params(document: Document) -> tuple:
    return (
        document.document_id,
        document.title,
        to_db_time(document.source_date),
        document.content_key,
        document.word_count,
        int(document.processed),
        document.chunk_count,
        to_db_time(document.last_processed_at),
        document.stage.value,
        document.category,
        document.project,
        document.department,
        json.dumps(document.participants),
        json.dumps(document.tags),
        document.duration_seconds,
    )


def _row_to_document(row: dict[str, Any]) -> Document:
    return Document(
        document_id=row["document_id"],
        title=row["title"],
        source_date=from_db_time(row["source_date"]),
        content_key=row["content_key"],
        word_count=row["word_count"],
        processed=bool(row["processed"]),
        chunk_count=row["chunk_count"],
        last_processed_at=from_db_time(row["last_processed_at"]),
        stage=DocumentStage(row["stage"]),
        category=row["category"],
        project=row["project"],
        department=row["department"],
        participants=json.loads(row["participants"] or "[]"),
        tags=json.loads(row["tags"] or "[]"),
        duration_seconds=row["duration_seconds"],
    )


def _chunk_params(chunk: Chunk) -> tuple:
    return (
        chunk.chunk_id,
        chunk.document_id,
        chunk.position,
        chunk.chunk_type.value,
        chunk.content,
        chunk.speaker,
        chunk.start_time,
        chunk.end_time,
        chunk.token_count,
        chunk.importance,
        chunk.sentiment,
        json.dumps(chunk.topics),
        encode_vector(chunk.embedding) if chunk.embedding else None,
        chunk.embedding_model,
        chunk.previous_chunk_id,
        chunk.next_chunk_id,
        chunk.parent_chunk_id,
    )


def _row_to_chunk(
    row: dict[str, Any],
    entities: list[ExtractedEntity],
    decode_embedding: bool = False,
) -> Chunk:
    embedding = None
    if decode_embedding and row["embedding"] is not None:
        try:
            embedding = decode_vector(row["embedding"])
        except EmbeddingCodecError as exc:
            logger.warning("chunk_embedding_corrupt", chunk_id=row["chunk_id"], error=str(exc))
    return Chunk(
        chunk_id=row["chunk_id"],
        document_id=row["document_id"],
        position=row["position"],
        chunk_type=ChunkType(row["chunk_type"]),
        content=row["content"],
        speaker=row["speaker"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        token_count=row["token_count"],
        importance=row["importance"],
        sentiment=row["sentiment"],
        topics=json.loads(row["topics"] or "[]"),
        entities=entities,
        embedding=embedding,
        embedding_model=row["embedding_model"],
        previous_chunk_id=row["previous_chunk_id"],
        next_chunk_id=row["next_chunk_id"],
        parent_chunk_id=row["parent_chunk_id"],
    )


def _candidate_chunk(row: dict[str, Any]) -> Chunk | None:
    """Map a search row to a Chunk, or None when the row is unreadable."""
    try:
        return _row_to_chunk(row, [])
    except (json.JSONDecodeError, ValidationError, ValueError) as exc:
        logger.warning("search_candidate_corrupt", chunk_id=row["chunk_id"], error=str(exc))
        return None

def _filter_conditions(filters: SearchFilters) -> tuple[list[str], list[Any]]:
    """Translate *filters* into SQL conditions over ``c`` (chunks) and ``d`` (documents)."""
    conditions: list[str] = []
    params: list[Any] = []

    if filters.date_from is not None:
        conditions.append("d.source_date >= ?")
        params.append(to_db_time(filters.date_from))
    if filters.date_to is not None:
        conditions.append("d.source_date <= ?")
        params.append(to_db_time(filters.date_to))
    if filters.category:
        conditions.append("d.category = ?")
        params.append(filters.category)
    if filters.project:
        conditions.append("d.project = ?")
        params.append(filters.project)
    if filters.department:
        conditions.append("d.department = ?")
        params.append(filters.department)
    if filters.speaker:
        conditions.append("c.speaker = ? COLLATE NOCASE")
        params.append(filters.speaker)
    for tag in filters.tags:
        conditions.append("EXISTS (SELECT 1 FROM json_each(d.tags) WHERE lower(value) = lower(?))")
        params.append(tag)
    if filters.chunk_types:
        placeholders = ", ".join("?" for _ in filters.chunk_types)
        conditions.append(f"c.chunk_type IN ({placeholders})")
        params.extend(t.value for t in filters.chunk_types)
    if filters.document_id:
        conditions.append("c.document_id = ?")
        params.append(filters.document_id)

    return conditions, params


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def _distinct(db: aiosqlite.Connection, query: str, params: tuple = ()) -> list[str]:
    cursor = await db.execute(query, params)
    return [row[0] for row in await cursor.fetchall()]

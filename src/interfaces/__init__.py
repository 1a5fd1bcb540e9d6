"""Public interface definitions for storage and external services.

Every external API or store is accessed through the abstract base classes
defined in this package.  Concrete adapters implement them and are
injected at runtime (see ``src/main.py``), so tests can swap in fakes
without touching business logic.

CONCRETE PROVIDER MAP:
    Interface             →  Concrete implementations (in src/providers/)
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider    →  OpenAIEmbeddingProvider
    ITranscriptSource     →  FirefliesTranscriptProvider
    IDocumentStore        →  SQLiteDocumentStore
    ITaskQueue            →  SQLiteTaskQueue
    IBlobStore            →  FilesystemBlobStore
"""

from src.interfaces.blob_store import IBlobStore
from src.interfaces.document_store import IDocumentStore
from src.interfaces.embedding_provider import IEmbeddingProvider
from src.interfaces.task_queue import ITaskQueue
from src.interfaces.transcript_source import ITranscriptSource

__all__ = [
    "IBlobStore",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ITaskQueue",
    "ITranscriptSource",
]

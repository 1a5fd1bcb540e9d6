"""Transcript ingestion stages.

1. **Metadata** (metadata_extractor.py / MetadataExtractor) -- category and
   tags derived from the transcript title.

2. **Segment** (segmenter.py / Segmenter) -- splits a transcript into a
   full chunk plus speaker-turn, time-window or topic chunks, with
   entities, topics, importance and relationships attached.

3. **Embed** (embedding_client.py / EmbeddingClient) -- batched, bounded
   and retried calls to an IEmbeddingProvider, normalised to float32.

The IngestionOrchestrator (src/pipeline) drives these stages per document
and persists the result through an IDocumentStore.
"""

from src.services.ingestion.embedding_client import EmbeddingClient
from src.services.ingestion.metadata_extractor import MetadataExtractor, TitleMetadata
from src.services.ingestion.segmenter import Segmenter

__all__ = [
    "EmbeddingClient",
    "MetadataExtractor",
    "Segmenter",
    "TitleMetadata",
]

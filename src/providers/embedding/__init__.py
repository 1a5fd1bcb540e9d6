"""Embedding provider implementations.

Embeddings turn chunk text into vectors for cosine-similarity search.
Every chunk in one index must come from the same model, so the model name
is stored with each chunk.

    OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims) or any
    OpenAI-compatible endpoint via ``openai_base_url``.
"""

from src.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]

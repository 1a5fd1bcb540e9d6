"""Similarity search over embedded transcript chunks."""

from src.services.search.similarity_search import SimilaritySearchEngine, cosine_similarity

__all__ = ["SimilaritySearchEngine", "cosine_similarity"]

"""Precomputed embedding lookup."""

from canonguard.embeddings.base import EmbeddingProvider, StaticEmbeddingProvider

__all__ = ["EmbeddingProvider", "StaticEmbeddingProvider"]

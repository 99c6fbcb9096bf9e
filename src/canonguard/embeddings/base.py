"""Embedding retrieval interface.

Vectors are computed elsewhere; the engine only looks them up.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence


class EmbeddingProvider(ABC):
    """Abstract lookup of precomputed vectors by record id."""

    @abstractmethod
    async def get_vectors(self, ids: list[str]) -> dict[str, list[float] | None]:
        """Return a vector per id, or None where no vector is available.

        Implementations raise UpstreamUnavailableError when the backing
        service cannot be reached at all.
        """
        ...


class StaticEmbeddingProvider(EmbeddingProvider):
    """Serves vectors from an in-memory mapping."""

    def __init__(self, vectors: Mapping[str, Sequence[float]] | None = None) -> None:
        self.vectors = {k: list(v) for k, v in (vectors or {}).items()}
        self.lookups = 0

    async def get_vectors(self, ids: list[str]) -> dict[str, list[float] | None]:
        self.lookups += 1
        return {i: self.vectors.get(i) for i in ids}

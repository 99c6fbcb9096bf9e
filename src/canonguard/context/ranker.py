"""Relevance ranking of supporting material.

    score(c) = w_sem · semantic(c) + w_rec · recency(c) + w_tag · tagged(c)

with defaults w_sem = 0.6, w_rec = 0.3, w_tag = 0.1, where:

    semantic  cosine(target vector, candidate vector) clamped to [0, 1]
    recency   1 - distance / horizon, 0 at or beyond the horizon
    tagged    1 if the candidate is manually tagged on the target scene

Scoring mode is picked per call from what the embedding lookup returned.
When the target has no vector, every candidate is scored tag-only; when
only a candidate lacks one, that candidate alone is scored tag-only
(semantic contributes nothing). Ranking never raises on missing vectors.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from canonguard.config import RankingConfig
from canonguard.context.models import RankingMode


@dataclass(frozen=True)
class Candidate:
    """A piece of supporting material offered for ranking."""

    id: str
    kind: str  # Entity kind ("character", ...) or "scene"
    text: str
    order: int  # Stable creation order, used for tie-breaks
    sequence: int | None = None  # Most recent story position at or before the target
    tagged: bool = False


@dataclass(frozen=True)
class RankedCandidate:
    id: str
    kind: str
    text: str
    score: float
    semantic: float | None  # None when scored tag-only
    recency: float
    tagged: bool


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float | None:
    """Cosine similarity clamped to [0, 1], or None if not comparable."""
    try:
        va = np.asarray(a, dtype=float)
        vb = np.asarray(b, dtype=float)
    except (TypeError, ValueError):
        return None
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return None
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0 or not np.isfinite(norm):
        return None
    sim = float(np.dot(va, vb) / norm)
    return min(1.0, max(0.0, sim))


class RelevanceRanker:
    """Scores and orders candidates for one target scene."""

    def __init__(self, config: RankingConfig | None = None) -> None:
        self.config = config or RankingConfig()

    def recency(self, target_sequence: int, candidate_sequence: int | None) -> float:
        horizon = self.config.recency_horizon
        if candidate_sequence is None or horizon <= 0:
            return 0.0
        distance = target_sequence - candidate_sequence
        if distance < 0 or distance >= horizon:
            return 0.0
        return 1.0 - distance / horizon

    def select_mode(
        self,
        target_id: str,
        vectors: Mapping[str, Sequence[float] | None] | None,
    ) -> RankingMode:
        if vectors and vectors.get(target_id) is not None:
            return RankingMode.EMBEDDING
        return RankingMode.TAG_ONLY

    def rank(
        self,
        target_id: str,
        target_sequence: int,
        candidates: list[Candidate],
        vectors: Mapping[str, Sequence[float] | None] | None = None,
    ) -> tuple[list[RankedCandidate], RankingMode]:
        """Rank candidates, highest score first, ties by creation order."""
        mode = self.select_mode(target_id, vectors)
        target_vec = vectors.get(target_id) if mode == RankingMode.EMBEDDING else None
        cfg = self.config

        ranked: list[tuple[float, int, RankedCandidate]] = []
        for cand in candidates:
            semantic = None
            if target_vec is not None:
                cand_vec = vectors.get(cand.id)
                if cand_vec is not None:
                    semantic = cosine_similarity(target_vec, cand_vec)

            recency = self.recency(target_sequence, cand.sequence)
            tag = 1.0 if cand.tagged else 0.0
            score = cfg.recency_weight * recency + cfg.tag_weight * tag
            if semantic is not None:
                score += cfg.semantic_weight * semantic
            score = round(min(1.0, max(0.0, score)), 6)

            ranked.append((
                -score,
                cand.order,
                RankedCandidate(
                    id=cand.id,
                    kind=cand.kind,
                    text=cand.text,
                    score=score,
                    semantic=semantic,
                    recency=recency,
                    tagged=cand.tagged,
                ),
            ))

        ranked.sort(key=lambda r: (r[0], r[1]))
        return [r[2] for r in ranked], mode

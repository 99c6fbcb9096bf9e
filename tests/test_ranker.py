"""Tests for relevance ranking."""

from __future__ import annotations

import pytest

from canonguard.config import RankingConfig
from canonguard.context.models import RankingMode
from canonguard.context.ranker import Candidate, RelevanceRanker, cosine_similarity


@pytest.fixture
def ranker() -> RelevanceRanker:
    return RelevanceRanker(RankingConfig(recency_horizon=10))


class TestCosine:
    def test_identical(self):
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_negative_clamped(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == 0.0

    def test_not_comparable(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) is None
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) is None
        assert cosine_similarity([], []) is None
        assert cosine_similarity(["x", "y"], [1.0, 0.0]) is None
        assert cosine_similarity([[1.0], [1.0, 2.0]], [1.0, 0.0]) is None


class TestRecency:
    def test_linear_decay(self, ranker: RelevanceRanker):
        assert ranker.recency(20, 20) == pytest.approx(1.0)
        assert ranker.recency(20, 15) == pytest.approx(0.5)

    def test_beyond_horizon(self, ranker: RelevanceRanker):
        assert ranker.recency(20, 10) == 0.0
        assert ranker.recency(20, 2) == 0.0

    def test_unknown_or_future(self, ranker: RelevanceRanker):
        assert ranker.recency(20, None) == 0.0
        assert ranker.recency(20, 25) == 0.0


class TestRank:
    def test_weighted_score(self, ranker: RelevanceRanker):
        cand = Candidate(id="c", kind="character", text="C", order=0, sequence=15, tagged=True)
        vectors = {"t": [1.0, 0.0], "c": [1.0, 0.0]}
        ranked, mode = ranker.rank("t", 20, [cand], vectors)
        assert mode == RankingMode.EMBEDDING
        # 0.6 * 1.0 + 0.3 * 0.5 + 0.1 * 1
        assert ranked[0].score == pytest.approx(0.85)
        assert 0.0 <= ranked[0].score <= 1.0

    def test_semantic_orders_candidates(self, ranker: RelevanceRanker):
        near = Candidate(id="near", kind="scene", text="n", order=1)
        far = Candidate(id="far", kind="scene", text="f", order=0)
        vectors = {"t": [1.0, 0.0], "near": [0.9, 0.1], "far": [0.0, 1.0]}
        ranked, _ = ranker.rank("t", 20, [far, near], vectors)
        assert [r.id for r in ranked] == ["near", "far"]

    def test_ties_break_by_creation_order(self, ranker: RelevanceRanker):
        cands = [
            Candidate(id="b", kind="item", text="b", order=1),
            Candidate(id="a", kind="item", text="a", order=0),
            Candidate(id="c", kind="item", text="c", order=2),
        ]
        ranked, _ = ranker.rank("t", 20, cands)
        assert [r.id for r in ranked] == ["a", "b", "c"]

    def test_no_target_vector_is_tag_only(self, ranker: RelevanceRanker):
        tagged = Candidate(id="x", kind="character", text="x", order=1, tagged=True)
        untagged = Candidate(id="y", kind="character", text="y", order=0)
        ranked, mode = ranker.rank("t", 20, [untagged, tagged], {"x": [1.0], "y": [1.0]})
        assert mode == RankingMode.TAG_ONLY
        assert ranked[0].id == "x"
        assert ranked[0].semantic is None
        assert ranked[0].score == pytest.approx(0.1)

    def test_missing_candidate_vector_degrades_that_candidate(self, ranker: RelevanceRanker):
        with_vec = Candidate(id="v", kind="scene", text="v", order=0)
        without = Candidate(id="w", kind="scene", text="w", order=1, tagged=True)
        ranked, mode = ranker.rank("t", 20, [with_vec, without], {"t": [1.0, 1.0], "v": [1.0, 1.0]})
        assert mode == RankingMode.EMBEDDING
        by_id = {r.id: r for r in ranked}
        assert by_id["v"].semantic == pytest.approx(1.0)
        assert by_id["w"].semantic is None
        assert by_id["w"].score == pytest.approx(0.1)

    def test_no_vectors_at_all(self, ranker: RelevanceRanker):
        cand = Candidate(id="c", kind="scene", text="c", order=0, sequence=19)
        ranked, mode = ranker.rank("t", 20, [cand], None)
        assert mode == RankingMode.TAG_ONLY
        assert ranked[0].score == pytest.approx(0.3 * 0.9)

    def test_empty(self, ranker: RelevanceRanker):
        ranked, mode = ranker.rank("t", 0, [], None)
        assert ranked == []
        assert mode == RankingMode.TAG_ONLY

    def test_malformed_vector_degrades_that_candidate(self, ranker: RelevanceRanker):
        bad = Candidate(id="bad", kind="scene", text="b", order=0, tagged=True)
        good = Candidate(id="good", kind="scene", text="g", order=1)
        vectors = {"t": [1.0, 0.0], "bad": ["x", "y"], "good": [1.0, 0.0]}
        ranked, mode = ranker.rank("t", 20, [bad, good], vectors)
        assert mode == RankingMode.EMBEDDING
        by_id = {r.id: r for r in ranked}
        assert by_id["bad"].semantic is None
        assert by_id["bad"].score == pytest.approx(0.1)
        assert by_id["good"].semantic == pytest.approx(1.0)

"""Spoiler-safe Context Composition.

Formulation:
  Given a target scene T, a window size N and a token budget B, build a
  prompt from blocks in priority order

      current scene  >  preceding summaries  >  gated canon facts
                     >  style guidelines     >  ranked supporting material

  plus fixed system/guardrail text F that is never dropped, such that

    1. Spoiler safety: no canon fact hidden at T appears unless the author
       override is set, and every hidden fact yields one redaction record.
    2. Budget:  c(F) + Σ c(b) ≤ B  over kept blocks b.
    3. Priority: once a block of tier t is dropped, no block of a tier
       below t is kept. Blocks are kept or dropped whole.

Algorithm:
  1. Fetch T (fatal if missing), then one batched fetch per record type
  2. Window: up to N preceding summaries (same chapter, then earlier
     chapters of the same book)
  3. Gate every canon fact of the entities tagged on T
  4. Fingerprint the effective inputs; serve from cache, or join an
     in-flight computation for the same fingerprint
  5. Rank supporting entities and earlier scenes (embeddings if available,
     tag-only otherwise)
  6. Greedy admission in priority order under the budget
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from pydantic import ValidationError

from canonguard.config import ProjectConfig
from canonguard.context.cache import ContextCache, InflightMap, MemoryCache
from canonguard.context.gate import GateDecision, RevealGate
from canonguard.context.models import (
    BlockTier,
    ContextBlock,
    ContextRequest,
    ContextResult,
    PromptObject,
    RankingMode,
    Redaction,
)
from canonguard.context.ranker import Candidate, RankedCandidate, RelevanceRanker
from canonguard.context.tokens import TokenCounter
from canonguard.context.window import SceneWindowSelector, WindowEntry
from canonguard.embeddings.base import EmbeddingProvider
from canonguard.exceptions import (
    BudgetInfeasibleError,
    ComposeTimeoutError,
    InvalidRequestError,
    NotFoundError,
)
from canonguard.story.models import CanonFact, ContextRule, Entity, Scene, StyleGuide
from canonguard.story.repository import StoryRepository
from canonguard.story.timeline import StoryPosition, Timeline

logger = logging.getLogger("canonguard.context")


@dataclass
class _Snapshot:
    """Everything read from storage for one target scene."""

    scene: Scene
    position: StoryPosition
    timeline: Timeline
    entities: dict[str, Entity]
    facts: list[CanonFact]
    style_guides: list[StyleGuide]
    rules: list[ContextRule]
    window: list[WindowEntry] = field(default_factory=list)
    decisions: list[tuple[CanonFact, GateDecision]] = field(default_factory=list)

    @property
    def visible_facts(self) -> list[CanonFact]:
        return [f for f, d in self.decisions if d.visible]

    @property
    def redactions(self) -> list[Redaction]:
        return [
            Redaction(fact_id=f.id, reason=d.reason, spoiler=d.spoiler)
            for f, d in self.decisions
            if d.redacted
        ]


class ContextComposer:
    """Assembles budgeted, spoiler-safe prompt context for a scene.

    Usage:
        composer = ContextComposer(repository, embeddings=provider)
        result = await composer.compose("scene-20", window_scenes=3, max_tokens=2000)
        payload = result.to_response()
    """

    def __init__(
        self,
        repository: StoryRepository,
        embeddings: EmbeddingProvider | None = None,
        cache: ContextCache | None = None,
        token_counter: TokenCounter | None = None,
        config: ProjectConfig | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.embeddings = embeddings
        self.config = config or ProjectConfig()
        self.cache = cache if cache is not None else MemoryCache()
        self.tokens = token_counter or TokenCounter(self.config.compose.chars_per_token)
        self.ranker = RelevanceRanker(self.config.ranking)
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.inflight = InflightMap()
        # record id -> target scene ids whose cached results depend on it
        self._dependents: dict[str, set[str]] = {}
        # target scene id -> cache key -> record ids that entry was built from
        self._tracked: dict[str, dict[str, set[str]]] = {}

    # -------------------------------------------------------------------
    # Main entry points
    # -------------------------------------------------------------------

    async def compose(
        self,
        scene_id: str,
        window_scenes: int | None = None,
        max_tokens: int | None = None,
        include_spoilers_for_author_tools: bool = False,
        model_name: str | None = None,
    ) -> ContextResult:
        """Compose context for a target scene.

        Args:
            scene_id: Target scene being written.
            window_scenes: Preceding summaries to include (1-10).
            max_tokens: Hard token budget (>= 100).
            include_spoilers_for_author_tools: Bypass reveal gates for
                author-facing tools. Bypassed facts are spoiler-flagged
                and still reported as redactions.
            model_name: Model whose tokenizer should be used.

        Raises:
            InvalidRequestError, NotFoundError, BudgetInfeasibleError,
            ComposeTimeoutError, UpstreamUnavailableError.
        """
        defaults = self.config.compose
        request = self.build_request({
            "sceneId": scene_id,
            "windowScenes": defaults.default_window_scenes if window_scenes is None else window_scenes,
            "maxTokens": defaults.default_max_tokens if max_tokens is None else max_tokens,
            "includeSpoilersForAuthorTools": include_spoilers_for_author_tools,
            "modelName": model_name,
        })
        return await self.compose_request(request)

    @staticmethod
    def build_request(payload: dict) -> ContextRequest:
        """Validate an API payload into a ContextRequest."""
        try:
            return ContextRequest.model_validate(payload)
        except ValidationError as e:
            raise InvalidRequestError(str(e)) from e

    async def compose_request(self, request: ContextRequest) -> ContextResult:
        try:
            return await asyncio.wait_for(
                self._compose(request), timeout=self.config.compose.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ComposeTimeoutError(
                f"composing context for scene '{request.scene_id}' exceeded "
                f"{self.config.compose.timeout_seconds}s"
            ) from e

    async def visible_facts(
        self, scene_id: str, include_spoilers: bool = False
    ) -> tuple[list[CanonFact], list[Redaction]]:
        """Gate the canon of a scene without composing a prompt."""
        snapshot = await self._load(scene_id, include_spoilers, window_scenes=0)
        return snapshot.visible_facts, snapshot.redactions

    async def rank_candidates(self, scene_id: str) -> list[RankedCandidate]:
        """Rank supporting material for a scene under the same constraints."""
        snapshot = await self._load(scene_id, False, window_scenes=0)
        ranked, _ = await self._rank(snapshot)
        return ranked

    async def invalidate(
        self,
        scene_ids: list[str] | tuple[str, ...] = (),
        entity_ids: list[str] | tuple[str, ...] = (),
        fact_ids: list[str] | tuple[str, ...] = (),
    ) -> int:
        """Drop cached results touched by the given records.

        Sweeps by scene key prefix, so every cached variant of an affected
        scene goes, not just the exact fingerprint.
        """
        targets: set[str] = set(scene_ids)
        for record_id in (*scene_ids, *entity_ids, *fact_ids):
            targets |= self._dependents.pop(record_id, set())

        removed = 0
        for scene_id in sorted(targets):
            removed += await self.cache.delete_prefix(self._scene_prefix(scene_id))
            self._tracked.pop(scene_id, None)
            self._register(scene_id)
        logger.debug("invalidated %d cache entries across %d scenes", removed, len(targets))
        return removed

    # -------------------------------------------------------------------
    # Phase 1-3: Load, window, gate
    # -------------------------------------------------------------------

    async def _load(
        self, scene_id: str, author_override: bool, window_scenes: int
    ) -> _Snapshot:
        scene = await self.repository.get_scene(scene_id)
        if scene is None:
            raise NotFoundError("Scene", scene_id)

        project_id = scene.project_id
        books, chapters, scenes, entities, guides, rules = await asyncio.gather(
            self.repository.get_books(project_id),
            self.repository.get_chapters(project_id),
            self.repository.get_scenes(project_id),
            self.repository.get_entities(project_id),
            self.repository.get_style_guides(project_id),
            self.repository.get_context_rules(project_id),
        )
        if not any(s.id == scene.id for s in scenes):
            scenes = [*scenes, scene]

        timeline = Timeline(books, chapters, scenes)
        position = timeline.position(scene.id)
        entity_map = {e.id: e for e in entities}

        tagged = [eid for eid in scene.tagged_entity_ids if eid in entity_map]
        facts = await self.repository.get_facts_for_entities(tagged) if tagged else []
        tag_order = {eid: i for i, eid in enumerate(tagged)}
        facts = sorted(
            facts, key=lambda f: (tag_order.get(f.entity_id, len(tag_order)), f.created_at, f.id)
        )

        snapshot = _Snapshot(
            scene=scene,
            position=position,
            timeline=timeline,
            entities=entity_map,
            facts=facts,
            style_guides=sorted(guides, key=lambda g: (g.name, g.id)),
            rules=sorted(rules, key=lambda r: r.id),
        )

        if window_scenes > 0:
            snapshot.window = SceneWindowSelector(timeline).select(scene, window_scenes)

        gate = RevealGate(
            positions={sid: timeline.position(sid) for sid in timeline.scenes},
            position_mode=self.config.gate.position_mode,
            now=self.now,
            scene_labels={sid: s.label for sid, s in timeline.scenes.items()},
        )
        snapshot.decisions = [
            (fact, gate.evaluate(fact, position, author_override)) for fact in facts
        ]
        hidden = sum(1 for _, d in snapshot.decisions if d.redacted)
        if hidden:
            logger.debug("scene %s: %d of %d facts gated", scene.id, hidden, len(facts))
        return snapshot

    # -------------------------------------------------------------------
    # Phase 4: Fingerprint, cache, in-flight collapse
    # -------------------------------------------------------------------

    def _scene_prefix(self, scene_id: str) -> str:
        return f"{self.config.cache.key_prefix}:{scene_id}:"

    def fingerprint(self, request: ContextRequest, snapshot: _Snapshot) -> str:
        """Deterministic hash of the request and the data it resolves to.

        Includes the ids of visible facts, so a date gate opening changes
        the fingerprint even though no record was modified. Every ranking
        candidate contributes its updated_at, so an edited earlier scene or
        rule-included entity is never served from a stale entry.
        """
        parts = [
            request.scene_id,
            str(request.window_scenes),
            str(request.max_tokens),
            str(request.include_spoilers_for_author_tools),
            request.model_name or "",
            snapshot.scene.updated_at.isoformat(),
        ]
        for entry in snapshot.window:
            window_scene = snapshot.timeline.scenes[entry.scene_id]
            parts.append(f"w:{entry.scene_id}:{window_scene.updated_at.isoformat()}")
        for fact, decision in snapshot.decisions:
            parts.append(f"f:{fact.id}:{fact.updated_at.isoformat()}:{int(decision.visible)}")
        for eid in snapshot.scene.tagged_entity_ids:
            entity = snapshot.entities.get(eid)
            if entity is not None:
                parts.append(f"e:{eid}:{entity.updated_at.isoformat()}")
        for guide in snapshot.style_guides:
            parts.append(f"g:{guide.id}:{guide.updated_at.isoformat()}")
        for rule in snapshot.rules:
            parts.append(f"r:{rule.id}:{rule.updated_at.isoformat()}")
        updated = {e.id: e.updated_at for e in snapshot.entities.values()}
        updated.update({s.id: s.updated_at for s in snapshot.timeline.scenes.values()})
        for cand in self._candidates(snapshot):
            parts.append(f"c:{cand.id}:{updated[cand.id].isoformat()}")
        return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:32]

    async def _compose(self, request: ContextRequest) -> ContextResult:
        snapshot = await self._load(
            request.scene_id,
            request.include_spoilers_for_author_tools,
            request.window_scenes,
        )
        fingerprint = self.fingerprint(request, snapshot)
        key = self._scene_prefix(request.scene_id) + fingerprint

        if self.config.cache.enabled:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug("cache hit for scene %s", request.scene_id)
                return cached

        return await self.inflight.run(
            key, lambda: self._resolve(request, snapshot, fingerprint, key)
        )

    async def _resolve(
        self,
        request: ContextRequest,
        snapshot: _Snapshot,
        fingerprint: str,
        key: str,
    ) -> ContextResult:
        start_time = time.time()

        ranked, mode = await self._rank(snapshot)
        result = self._assemble(request, snapshot, ranked, mode)
        result.fingerprint = fingerprint
        result.assembly_time_ms = round((time.time() - start_time) * 1000, 1)

        if self.config.cache.enabled:
            await self.cache.set(key, result, self.config.cache.ttl_seconds)
            await self._track(snapshot, ranked, key)
        return result

    async def _track(
        self, snapshot: _Snapshot, ranked: list[RankedCandidate], key: str
    ) -> None:
        """Index the records a cached entry depends on.

        Registrations of entries that have since expired are pruned here,
        so the index only covers live cache entries of the target.
        """
        target = snapshot.scene.id
        involved = {e.scene_id for e in snapshot.window}
        involved |= {f.id for f in snapshot.facts}
        involved |= {f.entity_id for f in snapshot.facts}
        involved |= set(snapshot.scene.tagged_entity_ids)
        involved |= {c.id for c in ranked}

        entries = self._tracked.setdefault(target, {})
        for old_key in list(entries):
            if old_key != key and await self.cache.get(old_key) is None:
                del entries[old_key]
        entries[key] = involved
        self._register(target)

    def _register(self, target: str) -> None:
        live = set().union(*self._tracked.get(target, {}).values())
        for record_id in list(self._dependents):
            if record_id not in live:
                self._forget(record_id, target)
        for record_id in live:
            self._dependents.setdefault(record_id, set()).add(target)

    def _forget(self, record_id: str, target: str) -> None:
        targets = self._dependents.get(record_id)
        if targets is None:
            return
        targets.discard(target)
        if not targets:
            del self._dependents[record_id]

    # -------------------------------------------------------------------
    # Phase 5: Ranking
    # -------------------------------------------------------------------

    def _candidates(self, snapshot: _Snapshot) -> list[Candidate]:
        scene = snapshot.scene
        timeline = snapshot.timeline
        earlier = timeline.scenes_before(scene.id)

        entity_ids = list(scene.tagged_entity_ids)
        for rule in snapshot.rules:
            for entity in snapshot.entities.values():
                if rule.includes(entity) and entity.id not in entity_ids:
                    entity_ids.append(entity.id)

        # Latest earlier scene that tags each entity
        last_seen: dict[str, int] = {}
        for other in earlier:
            seq = timeline.position(other.id).sequence
            for eid in other.tagged_entity_ids:
                if seq > last_seen.get(eid, -1):
                    last_seen[eid] = seq

        candidates: list[Candidate] = []
        tagged_entities = set(scene.tagged_entity_ids)
        for eid in entity_ids:
            entity = snapshot.entities.get(eid)
            if entity is None:
                continue
            if any(rule.excludes(entity) for rule in snapshot.rules):
                continue
            candidates.append(Candidate(
                id=entity.id,
                kind=entity.kind.value,
                text=entity.render(),
                order=0,
                sequence=last_seen.get(eid),
                tagged=eid in tagged_entities,
            ))

        # Earlier scenes only: later summaries would leak future plot
        window_ids = {e.scene_id for e in snapshot.window}
        tagged_scenes = set(scene.tagged_scene_ids)
        for other in earlier:
            if other.id in window_ids or not (other.summary or "").strip():
                continue
            candidates.append(Candidate(
                id=other.id,
                kind="scene",
                text=f"{other.label}: {other.summary.strip()}",
                order=0,
                sequence=timeline.position(other.id).sequence,
                tagged=other.id in tagged_scenes,
            ))

        created = {e.id: e.created_at for e in snapshot.entities.values()}
        created.update({s.id: s.created_at for s in timeline.scenes.values()})
        by_creation = sorted(candidates, key=lambda c: (created[c.id], c.id))
        order = {c.id: i for i, c in enumerate(by_creation)}
        return [
            replace(c, order=order[c.id])
            for c in candidates
        ]

    async def _lookup_vectors(self, ids: list[str]) -> dict[str, list[float] | None] | None:
        if self.embeddings is None:
            return None
        try:
            return await asyncio.wait_for(
                self.embeddings.get_vectors(ids),
                timeout=self.config.compose.embedding_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("embedding lookup timed out, ranking tag-only")
        except Exception as e:
            logger.warning("embedding lookup failed, ranking tag-only: %s", e)
        return None

    async def _rank(self, snapshot: _Snapshot) -> tuple[list[RankedCandidate], RankingMode]:
        candidates = self._candidates(snapshot)
        if not candidates:
            return [], RankingMode.TAG_ONLY

        vectors = await self._lookup_vectors([snapshot.scene.id] + [c.id for c in candidates])
        ranked, mode = self.ranker.rank(
            snapshot.scene.id, snapshot.position.sequence, candidates, vectors
        )
        if mode == RankingMode.TAG_ONLY and self.embeddings is not None:
            logger.info("scene %s ranked tag-only (no target embedding)", snapshot.scene.id)
        return ranked[: self.config.ranking.max_candidates], mode

    # -------------------------------------------------------------------
    # Phase 6: Budgeted assembly
    # -------------------------------------------------------------------

    def _blocks(
        self,
        snapshot: _Snapshot,
        ranked: list[RankedCandidate],
        model_name: str | None,
    ) -> list[ContextBlock]:
        """All candidate blocks in admission order (highest priority first)."""
        scene = snapshot.scene
        blocks: list[ContextBlock] = []

        body = scene.content.strip() or (scene.summary or "").strip() or "[Empty scene]"
        blocks.append(ContextBlock(
            key=scene.id,
            tier=BlockTier.CURRENT_SCENE,
            text=f"Current scene ({scene.label}):\n{body}",
            reason="target scene",
        ))

        # Newest summary is admitted first; rendering restores story order
        for entry in reversed(snapshot.window):
            blocks.append(ContextBlock(
                key=entry.scene_id,
                tier=BlockTier.PRECEDING_SUMMARY,
                text=f"Previously ({entry.label}): {entry.summary}",
                reason="preceding scene",
            ))

        for fact, decision in snapshot.decisions:
            if not decision.visible:
                continue
            entity = snapshot.entities.get(fact.entity_id)
            owner = entity.name if entity else fact.entity_id
            blocks.append(ContextBlock(
                key=fact.id,
                tier=BlockTier.CANON_FACT,
                text=f"{owner}: {fact.fact}",
                score=fact.confidence / 100,
                reason="spoiler, author override" if decision.spoiler else "revealed canon",
                spoiler=decision.spoiler,
            ))

        for guide in snapshot.style_guides:
            for idx, rule in enumerate(guide.rules):
                blocks.append(ContextBlock(
                    key=f"{guide.id}#{idx}",
                    tier=BlockTier.STYLE_GUIDE,
                    text=rule,
                    reason=f"style guide '{guide.name or guide.id}'",
                ))

        for cand in ranked:
            label = "related scene" if cand.kind == "scene" else cand.kind
            reason = "tagged on scene" if cand.tagged else "ranked"
            blocks.append(ContextBlock(
                key=cand.id,
                tier=BlockTier.SUPPORTING,
                text=f"[{label}] {cand.text}",
                score=cand.score,
                reason=reason,
            ))

        for block in blocks:
            block.token_estimate = self.tokens.count(block.text, model_name)
        return blocks

    def _budget(self, request: ContextRequest, snapshot: _Snapshot) -> int:
        budget = request.max_tokens
        for rule in snapshot.rules:
            if rule.max_tokens is not None:
                budget = min(budget, rule.max_tokens)
        return budget

    def _assemble(
        self,
        request: ContextRequest,
        snapshot: _Snapshot,
        ranked: list[RankedCandidate],
        mode: RankingMode,
    ) -> ContextResult:
        prompt_cfg = self.config.prompt
        model_name = request.model_name or self.config.compose.model_name
        budget = self._budget(request, snapshot)

        fixed_tokens = sum(
            self.tokens.count(text, model_name)
            for text in (prompt_cfg.system, prompt_cfg.instructions, *prompt_cfg.guardrails)
        )
        if fixed_tokens > budget:
            raise BudgetInfeasibleError(fixed_tokens, budget)

        blocks = self._blocks(snapshot, ranked, model_name)
        current = blocks[0]
        if fixed_tokens + current.token_estimate > budget:
            raise BudgetInfeasibleError(
                fixed_tokens + current.token_estimate, budget,
                what="fixed prompt text plus the current scene",
            )

        used = fixed_tokens
        kept: list[ContextBlock] = []
        dropped: list[str] = []
        cutoff: BlockTier | None = None  # Lowest tier still admissible after a drop
        for block in blocks:
            if cutoff is not None and block.tier > cutoff:
                dropped.append(block.key)
                continue
            if used + block.token_estimate > budget:
                dropped.append(block.key)
                cutoff = block.tier
                continue
            kept.append(block)
            used += block.token_estimate

        if dropped:
            logger.debug(
                "scene %s: dropped %d blocks to fit %d tokens", snapshot.scene.id, len(dropped), budget
            )

        summaries = [b for b in kept if b.tier == BlockTier.PRECEDING_SUMMARY]
        summaries.reverse()
        scene_context = [current.text] + [b.text for b in summaries]
        scene_context += [b.text for b in kept if b.tier == BlockTier.SUPPORTING]

        prompt = PromptObject(
            system=prompt_cfg.system,
            instructions=prompt_cfg.instructions,
            scene_context=scene_context,
            canon_facts=[b.text for b in kept if b.tier == BlockTier.CANON_FACT],
            style_guidelines=[b.text for b in kept if b.tier == BlockTier.STYLE_GUIDE],
            guardrails=list(prompt_cfg.guardrails),
        )

        return ContextResult(
            prompt=prompt,
            redactions=snapshot.redactions,
            token_estimate=used,
            max_tokens=budget,
            ranking_mode=mode,
            blocks=kept,
            dropped_blocks=dropped,
        )

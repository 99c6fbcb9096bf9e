"""Spoiler-safe context composition.

Assembles a token-budgeted prompt for a target scene from only the
narrative material visible at that point of the story.

Usage:
    from canonguard.context import ContextComposer

    composer = ContextComposer(repository, embeddings=provider)
    result = await composer.compose("scene-20", window_scenes=3, max_tokens=2000)
    print(result.render())
"""

from canonguard.context.engine import ContextComposer
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
from canonguard.context.window import SceneWindowSelector

__all__ = [
    "ContextComposer",
    "RevealGate",
    "GateDecision",
    "SceneWindowSelector",
    "RelevanceRanker",
    "Candidate",
    "RankedCandidate",
    "BlockTier",
    "ContextBlock",
    "ContextRequest",
    "ContextResult",
    "PromptObject",
    "RankingMode",
    "Redaction",
]

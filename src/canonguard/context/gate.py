"""Reveal gate evaluation.

A canon fact is either Visible or Hidden at a story position. The spoiler
flag is orthogonal: under author override a Hidden fact is let through but
marked so editorial tooling can highlight it, and the hidden reason is kept
for the redaction audit.

State table:

    REVEALED               always visible
    REDACTED_UNTIL_SCENE   visible iff target >= reveal scene position
    REDACTED_UNTIL_DATE    visible iff now >= reveal timestamp
    PLANNED                never visible (override only)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from canonguard.story.models import CanonFact, RevealState
from canonguard.story.timeline import StoryPosition

MISCONFIGURED_GATE = "misconfigured gate"


@dataclass(frozen=True)
class GateDecision:
    visible: bool
    reason: str | None = None  # Set whenever the gate itself would hide the fact
    spoiler: bool = False

    @property
    def redacted(self) -> bool:
        """Whether this decision must produce a redaction record."""
        return self.reason is not None


VISIBLE = GateDecision(visible=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RevealGate:
    """Decides fact visibility for a single story position.

    Args:
        positions: Scene id to position, used to resolve reveal scenes.
        position_mode: "ordinal" or "story_time".
        now: Clock used for date gates.
        scene_labels: Optional scene id to display label for reasons.
    """

    def __init__(
        self,
        positions: Mapping[str, StoryPosition],
        position_mode: str = "ordinal",
        now: Callable[[], datetime] = _utcnow,
        scene_labels: Mapping[str, str] | None = None,
    ) -> None:
        self.positions = positions
        self.position_mode = position_mode
        self.now = now
        self.scene_labels = scene_labels or {}

    def evaluate(
        self,
        fact: CanonFact,
        target: StoryPosition,
        author_override: bool = False,
    ) -> GateDecision:
        reason = self._hidden_reason(fact, target)
        if reason is None:
            return VISIBLE
        if author_override:
            return GateDecision(visible=True, reason=reason, spoiler=True)
        return GateDecision(visible=False, reason=reason)

    def _hidden_reason(self, fact: CanonFact, target: StoryPosition) -> str | None:
        state = fact.reveal_state

        if state == RevealState.REVEALED:
            return None

        if state == RevealState.PLANNED:
            return "planned fact, not yet revealed in the manuscript"

        if state == RevealState.REDACTED_UNTIL_SCENE:
            if not fact.reveal_scene_id:
                return MISCONFIGURED_GATE
            reveal = self.positions.get(fact.reveal_scene_id)
            if reveal is None:
                return f"{MISCONFIGURED_GATE}: reveal scene {fact.reveal_scene_id} not found"
            if self._reached(target, reveal):
                return None
            label = self.scene_labels.get(fact.reveal_scene_id, fact.reveal_scene_id)
            return f"redacted until scene {label}"

        if state == RevealState.REDACTED_UNTIL_DATE:
            if fact.reveal_at is None:
                return MISCONFIGURED_GATE
            reveal_at = fact.reveal_at
            if reveal_at.tzinfo is None:
                reveal_at = reveal_at.replace(tzinfo=timezone.utc)
            if self.now() >= reveal_at:
                return None
            return f"redacted until {reveal_at.isoformat()}"

        return MISCONFIGURED_GATE

    def _reached(self, target: StoryPosition, reveal: StoryPosition) -> bool:
        if (
            self.position_mode == "story_time"
            and target.story_time is not None
            and reveal.story_time is not None
        ):
            return target.story_time >= reveal.story_time
        return target >= reveal

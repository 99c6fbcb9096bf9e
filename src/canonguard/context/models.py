"""Data models for spoiler-safe context composition."""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field


class BlockTier(IntEnum):
    """Priority of a prompt block. Lower value survives truncation longer."""

    CURRENT_SCENE = 0
    PRECEDING_SUMMARY = 1
    CANON_FACT = 2
    STYLE_GUIDE = 3
    SUPPORTING = 4


class RankingMode(str, Enum):
    """How supporting material was scored for a call."""

    EMBEDDING = "embedding"  # Cosine similarity available for at least one candidate
    TAG_ONLY = "tag_only"  # No usable vectors; recency and tags only


class ContextBlock(BaseModel):
    """A single unit of prompt content. Blocks are kept or dropped whole."""

    key: str
    tier: BlockTier
    text: str
    token_estimate: int = 0
    score: float = 0.0
    reason: str = ""  # Why this was included
    spoiler: bool = False  # Included only because of author override


class Redaction(BaseModel):
    """Audit entry for a canon fact withheld by its reveal gate."""

    fact_id: str
    reason: str
    spoiler: bool = False  # True when the fact was included anyway under override

    def to_response(self) -> dict:
        return {"factId": self.fact_id, "reason": self.reason, "spoilerFlagged": self.spoiler}


class PromptObject(BaseModel):
    """Structured prompt handed to the generation request handler."""

    model_config = ConfigDict(populate_by_name=True)

    system: str
    instructions: str
    scene_context: list[str] = Field(default_factory=list, alias="sceneContext")
    canon_facts: list[str] = Field(default_factory=list, alias="canonFacts")
    style_guidelines: list[str] = Field(default_factory=list, alias="styleGuidelines")
    guardrails: list[str] = Field(default_factory=list)


class ContextRequest(BaseModel):
    """A compose request as received from the API."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    scene_id: str = Field(alias="sceneId", min_length=1)
    window_scenes: int = Field(default=3, alias="windowScenes", ge=1, le=10)
    include_spoilers_for_author_tools: bool = Field(
        default=False, alias="includeSpoilersForAuthorTools"
    )
    max_tokens: int = Field(default=2000, alias="maxTokens", ge=100)
    model_name: str | None = Field(default=None, alias="modelName")


class ContextResult(BaseModel):
    """The assembled, budgeted, spoiler-safe context."""

    prompt: PromptObject
    redactions: list[Redaction] = Field(default_factory=list)
    token_estimate: int = 0
    max_tokens: int = 0
    fingerprint: str = ""
    # Diagnostics, not part of the API response
    ranking_mode: RankingMode = RankingMode.TAG_ONLY
    blocks: list[ContextBlock] = Field(default_factory=list)
    dropped_blocks: list[str] = Field(default_factory=list)
    assembly_time_ms: float = 0.0

    def to_response(self) -> dict:
        return {
            "promptObject": self.prompt.model_dump(by_alias=True),
            "redactions": [r.to_response() for r in self.redactions],
            "tokenEstimate": self.token_estimate,
        }

    def render(self) -> str:
        """Flatten the prompt object into a single text for preview."""
        p = self.prompt
        sections: list[str] = [p.system, "", p.instructions, ""]
        if p.scene_context:
            sections.append("## Scene context")
            sections.extend(p.scene_context)
            sections.append("")
        if p.canon_facts:
            sections.append("## Canon")
            sections.extend(f"- {fact}" for fact in p.canon_facts)
            sections.append("")
        if p.style_guidelines:
            sections.append("## Style")
            sections.extend(f"- {rule}" for rule in p.style_guidelines)
            sections.append("")
        sections.append("## Guardrails")
        sections.extend(f"- {g}" for g in p.guardrails)
        return "\n".join(sections)

    def summary(self) -> str:
        """Human-readable summary of what's in the context."""
        used_pct = self.token_estimate / max(self.max_tokens, 1) * 100
        lines = [
            f"Tokens: {self.token_estimate:,} / {self.max_tokens:,} ({used_pct:.0f}%)",
            f"Ranking: {self.ranking_mode.value}",
            f"Blocks: {len(self.blocks)} included, {len(self.dropped_blocks)} dropped",
            f"Redactions: {len(self.redactions)}",
            f"Assembly time: {self.assembly_time_ms:.1f}ms",
            "",
            "Included blocks:",
        ]
        for block in self.blocks:
            marker = "!" if block.spoiler else ">"
            lines.append(
                f"  {marker} [{block.tier.name.lower()}] {block.key} "
                f"score={block.score:.2f} ~{block.token_estimate}tok"
            )
            if block.reason:
                lines.append(f"    reason: {block.reason}")
        return "\n".join(lines)

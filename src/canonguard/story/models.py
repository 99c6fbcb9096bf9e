"""Story data model consumed by the context engine.

These records are owned by the persistence layer; the engine only reads
them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityKind(str, Enum):
    """Kind of story entity."""

    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    ORGANIZATION = "organization"


class RevealState(str, Enum):
    """When a canon fact becomes visible to generation."""

    PLANNED = "PLANNED"  # Author's notes, never shown without override
    REVEALED = "REVEALED"
    REDACTED_UNTIL_SCENE = "REDACTED_UNTIL_SCENE"
    REDACTED_UNTIL_DATE = "REDACTED_UNTIL_DATE"


class StoryRecord(BaseModel):
    """Base for persisted records.

    Timestamps without an offset are taken as UTC, so records from
    different exports always compare.
    """

    @field_validator("created_at", "updated_at", "reveal_at", check_fields=False)
    @classmethod
    def normalize_timezone(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Book(StoryRecord):
    id: str
    project_id: str
    title: str = ""
    ordinal: int = 0
    updated_at: datetime = Field(default_factory=utcnow)


class Chapter(StoryRecord):
    id: str
    book_id: str
    title: str = ""
    ordinal: int = 0  # Position inside the book
    updated_at: datetime = Field(default_factory=utcnow)


class Scene(StoryRecord):
    """A scene of the manuscript."""

    id: str
    project_id: str
    book_id: str
    chapter_id: str
    ordinal: int = 0  # Position inside the chapter
    title: str = ""
    summary: str | None = None
    content: str = ""
    story_time: float | None = None  # In-story chronology, optional
    tagged_entity_ids: list[str] = Field(default_factory=list)
    tagged_scene_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def label(self) -> str:
        return self.title or self.id


class Entity(StoryRecord):
    """A character, location, item or organization."""

    id: str
    project_id: str
    kind: EntityKind = EntityKind.CHARACTER
    name: str
    aliases: list[str] = Field(default_factory=list)
    traits: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def render(self) -> str:
        parts = [f"{self.name} ({self.kind.value})"]
        if self.aliases:
            parts.append(f"also known as {', '.join(self.aliases)}")
        if self.traits:
            parts.append(f"traits: {', '.join(self.traits)}")
        return "; ".join(parts)


class CanonFact(StoryRecord):
    """A discrete piece of story truth attached to an entity."""

    id: str
    entity_id: str
    fact: str
    reveal_state: RevealState = RevealState.PLANNED
    reveal_scene_id: str | None = None
    reveal_at: datetime | None = None
    confidence: int = 100
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StyleGuide(StoryRecord):
    """Project-level writing rules passed to the model."""

    id: str
    project_id: str
    name: str = ""
    rules: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)


class ContextRule(StoryRecord):
    """Project-level include/exclude rules for supporting material.

    Entries in ``include``/``exclude`` match entity ids or entity kinds.
    """

    id: str
    project_id: str
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    max_tokens: int | None = None
    updated_at: datetime = Field(default_factory=utcnow)

    def includes(self, entity: Entity) -> bool:
        return entity.id in self.include or entity.kind.value in self.include

    def excludes(self, entity: Entity) -> bool:
        return entity.id in self.exclude or entity.kind.value in self.exclude

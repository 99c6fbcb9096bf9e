"""Data-access layer interface for story records.

Each method is a single batched lookup so the engine issues one query per
record type, never one per candidate.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path

from canonguard.story.models import (
    Book,
    CanonFact,
    Chapter,
    ContextRule,
    Entity,
    Scene,
    StyleGuide,
)


class StoryRepository(ABC):
    """Abstract read-only access to persisted story data."""

    @abstractmethod
    async def get_scene(self, scene_id: str) -> Scene | None:
        ...

    @abstractmethod
    async def get_books(self, project_id: str) -> list[Book]:
        ...

    @abstractmethod
    async def get_chapters(self, project_id: str) -> list[Chapter]:
        ...

    @abstractmethod
    async def get_scenes(self, project_id: str) -> list[Scene]:
        ...

    @abstractmethod
    async def get_entities(self, project_id: str) -> list[Entity]:
        ...

    @abstractmethod
    async def get_facts_for_entities(self, entity_ids: list[str]) -> list[CanonFact]:
        ...

    @abstractmethod
    async def get_style_guides(self, project_id: str) -> list[StyleGuide]:
        ...

    @abstractmethod
    async def get_context_rules(self, project_id: str) -> list[ContextRule]:
        ...


class InMemoryStoryRepository(StoryRepository):
    """Dict-backed repository, used by the CLI and tests."""

    def __init__(
        self,
        books: list[Book] | None = None,
        chapters: list[Chapter] | None = None,
        scenes: list[Scene] | None = None,
        entities: list[Entity] | None = None,
        facts: list[CanonFact] | None = None,
        style_guides: list[StyleGuide] | None = None,
        context_rules: list[ContextRule] | None = None,
    ) -> None:
        self.books = {b.id: b for b in books or []}
        self.chapters = {c.id: c for c in chapters or []}
        self.scenes = {s.id: s for s in scenes or []}
        self.entities = {e.id: e for e in entities or []}
        self.facts = {f.id: f for f in facts or []}
        self.style_guides = {g.id: g for g in style_guides or []}
        self.context_rules = {r.id: r for r in context_rules or []}
        self.calls: dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def get_scene(self, scene_id: str) -> Scene | None:
        self._count("get_scene")
        return self.scenes.get(scene_id)

    async def get_books(self, project_id: str) -> list[Book]:
        self._count("get_books")
        return [b for b in self.books.values() if b.project_id == project_id]

    async def get_chapters(self, project_id: str) -> list[Chapter]:
        self._count("get_chapters")
        book_ids = {b.id for b in self.books.values() if b.project_id == project_id}
        return [c for c in self.chapters.values() if c.book_id in book_ids]

    async def get_scenes(self, project_id: str) -> list[Scene]:
        self._count("get_scenes")
        return [s for s in self.scenes.values() if s.project_id == project_id]

    async def get_entities(self, project_id: str) -> list[Entity]:
        self._count("get_entities")
        return [e for e in self.entities.values() if e.project_id == project_id]

    async def get_facts_for_entities(self, entity_ids: list[str]) -> list[CanonFact]:
        self._count("get_facts_for_entities")
        wanted = set(entity_ids)
        return [f for f in self.facts.values() if f.entity_id in wanted]

    async def get_style_guides(self, project_id: str) -> list[StyleGuide]:
        self._count("get_style_guides")
        return [g for g in self.style_guides.values() if g.project_id == project_id]

    async def get_context_rules(self, project_id: str) -> list[ContextRule]:
        self._count("get_context_rules")
        return [r for r in self.context_rules.values() if r.project_id == project_id]

    @classmethod
    def from_dict(cls, data: dict) -> InMemoryStoryRepository:
        """Build a repository from a story export.

        Expected keys: books, chapters, scenes, entities, facts,
        style_guides, context_rules. Missing keys are treated as empty.
        """
        return cls(
            books=[Book(**b) for b in data.get("books", [])],
            chapters=[Chapter(**c) for c in data.get("chapters", [])],
            scenes=[Scene(**s) for s in data.get("scenes", [])],
            entities=[Entity(**e) for e in data.get("entities", [])],
            facts=[CanonFact(**f) for f in data.get("facts", [])],
            style_guides=[StyleGuide(**g) for g in data.get("style_guides", [])],
            context_rules=[ContextRule(**r) for r in data.get("context_rules", [])],
        )


def load_story_file(path: str | Path) -> InMemoryStoryRepository:
    """Load a JSON story export into an in-memory repository."""
    data = json.loads(Path(path).read_text())
    return InMemoryStoryRepository.from_dict(data)

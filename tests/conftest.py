"""Shared test fixtures for canonguard."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from canonguard.config import ProjectConfig, PromptConfig
from canonguard.story.repository import InMemoryStoryRepository

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)

SECRET = "is secretly the villain"


def _ts(minutes: int) -> str:
    return (BASE_TIME + timedelta(minutes=minutes)).isoformat()


def build_story_data() -> dict:
    """A two-book project.

    Book 1 has chapters ch-1..ch-5 with ten scenes each (scene-1..scene-50,
    titled "Scene-N"). Book 2 has ch-6 with scene-51..scene-53. Scene-33
    has no summary.
    """
    books = [
        {"id": "book-1", "project_id": "proj", "title": "The Fall", "ordinal": 0,
         "updated_at": _ts(0)},
        {"id": "book-2", "project_id": "proj", "title": "The Rise", "ordinal": 1,
         "updated_at": _ts(0)},
    ]
    chapters = [
        {"id": f"ch-{c}", "book_id": "book-1", "title": f"Chapter {c}", "ordinal": c - 1,
         "updated_at": _ts(0)}
        for c in range(1, 6)
    ]
    chapters.append(
        {"id": "ch-6", "book_id": "book-2", "title": "Chapter 1", "ordinal": 0,
         "updated_at": _ts(0)}
    )

    scenes = []
    for n in range(1, 54):
        if n <= 50:
            chapter_id, book_id, ordinal = f"ch-{(n - 1) // 10 + 1}", "book-1", (n - 1) % 10
        else:
            chapter_id, book_id, ordinal = "ch-6", "book-2", n - 51
        scenes.append({
            "id": f"scene-{n}",
            "project_id": "proj",
            "book_id": book_id,
            "chapter_id": chapter_id,
            "ordinal": ordinal,
            "title": f"Scene-{n}",
            "summary": None if n == 33 else f"Summary of scene {n}.",
            "content": f"Body of scene {n}.",
            "tagged_entity_ids": [],
            "created_at": _ts(n),
            "updated_at": _ts(n),
        })

    by_id = {s["id"]: s for s in scenes}
    by_id["scene-20"]["content"] = "Anna crosses the great hall of the castle at dusk."
    by_id["scene-20"]["tagged_entity_ids"] = ["ent-anna", "ent-castle"]
    by_id["scene-20"]["tagged_scene_ids"] = ["scene-5"]
    by_id["scene-15"]["tagged_entity_ids"] = ["ent-anna", "ent-bram"]
    by_id["scene-45"]["tagged_entity_ids"] = ["ent-anna"]

    entities = [
        {"id": "ent-anna", "project_id": "proj", "kind": "character", "name": "Anna",
         "aliases": ["The Heir"], "traits": ["stubborn", "tall"],
         "created_at": _ts(1), "updated_at": _ts(1)},
        {"id": "ent-castle", "project_id": "proj", "kind": "location", "name": "Castle Vere",
         "traits": ["crumbling"], "created_at": _ts(2), "updated_at": _ts(2)},
        {"id": "ent-bram", "project_id": "proj", "kind": "character", "name": "Bram",
         "created_at": _ts(3), "updated_at": _ts(3)},
    ]

    facts = [
        {"id": "fact-tall", "entity_id": "ent-anna", "fact": "is the tallest in her family",
         "reveal_state": "REVEALED", "created_at": _ts(10), "updated_at": _ts(10)},
        {"id": "fact-villain", "entity_id": "ent-anna", "fact": SECRET,
         "reveal_state": "REDACTED_UNTIL_SCENE", "reveal_scene_id": "scene-45",
         "created_at": _ts(11), "updated_at": _ts(11)},
        {"id": "fact-plan", "entity_id": "ent-anna", "fact": "will betray the crown",
         "reveal_state": "PLANNED", "created_at": _ts(12), "updated_at": _ts(12)},
        {"id": "fact-early", "entity_id": "ent-anna", "fact": "was born in the north",
         "reveal_state": "REDACTED_UNTIL_SCENE", "reveal_scene_id": "scene-10",
         "created_at": _ts(13), "updated_at": _ts(13)},
        {"id": "fact-castle", "entity_id": "ent-castle", "fact": "has a hidden vault",
         "reveal_state": "REDACTED_UNTIL_DATE", "reveal_at": "2030-01-01T00:00:00+00:00",
         "created_at": _ts(14), "updated_at": _ts(14)},
        {"id": "fact-bram", "entity_id": "ent-bram", "fact": "owes Anna a debt",
         "reveal_state": "REVEALED", "created_at": _ts(15), "updated_at": _ts(15)},
    ]

    style_guides = [
        {"id": "style-1", "project_id": "proj", "name": "House style",
         "rules": ["Write in close third person.", "Prefer short sentences in action."],
         "updated_at": _ts(0)},
    ]

    return {
        "books": books,
        "chapters": chapters,
        "scenes": scenes,
        "entities": entities,
        "facts": facts,
        "style_guides": style_guides,
        "context_rules": [],
    }


@pytest.fixture
def story_data() -> dict:
    return build_story_data()


@pytest.fixture
def repository(story_data: dict) -> InMemoryStoryRepository:
    return InMemoryStoryRepository.from_dict(story_data)


@pytest.fixture
def config() -> ProjectConfig:
    return ProjectConfig(name="test")


@pytest.fixture
def small_prompt_config() -> ProjectConfig:
    """Config whose fixed prompt text is tiny, for budget arithmetic."""
    return ProjectConfig(
        name="test",
        prompt=PromptConfig(system="Sys.", instructions="Go.", guardrails=["No spoilers."]),
    )


@pytest.fixture
def story_project(tmp_path: Path, story_data: dict) -> Path:
    """A project directory with a story export in .canonguard/."""
    cg_dir = tmp_path / ".canonguard"
    cg_dir.mkdir()
    (cg_dir / "story.json").write_text(json.dumps(story_data))
    return tmp_path

"""Story records and the data-access interface the engine reads through."""

from canonguard.story.models import (
    Book,
    CanonFact,
    Chapter,
    ContextRule,
    Entity,
    EntityKind,
    RevealState,
    Scene,
    StyleGuide,
)
from canonguard.story.repository import InMemoryStoryRepository, StoryRepository, load_story_file
from canonguard.story.timeline import StoryPosition, Timeline

__all__ = [
    "Book",
    "CanonFact",
    "Chapter",
    "ContextRule",
    "Entity",
    "EntityKind",
    "RevealState",
    "Scene",
    "StyleGuide",
    "StoryRepository",
    "InMemoryStoryRepository",
    "load_story_file",
    "StoryPosition",
    "Timeline",
]

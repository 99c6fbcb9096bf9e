"""Story positions: where a scene sits in the manuscript."""

from __future__ import annotations

from dataclasses import dataclass, field

from canonguard.story.models import Book, Chapter, Scene


@dataclass(frozen=True, order=True)
class StoryPosition:
    """Sortable authoring position of a scene.

    Ordering compares (book, chapter, scene) ordinals. ``story_time`` and
    ``sequence`` ride along without taking part in comparisons.
    """

    book: int
    chapter: int
    scene: int
    story_time: float | None = field(default=None, compare=False)
    sequence: int = field(default=0, compare=False)  # Flat index across the project


class Timeline:
    """Ordered view over the books, chapters and scenes of one project.

    Built once per compose call from batched fetches; all lookups after
    construction are pure.
    """

    def __init__(
        self,
        books: list[Book],
        chapters: list[Chapter],
        scenes: list[Scene],
    ) -> None:
        self.books = {b.id: b for b in books}
        self.chapters = {c.id: c for c in chapters}
        self.scenes = {s.id: s for s in scenes}

        self._chapters_by_book: dict[str, list[Chapter]] = {}
        for chapter in chapters:
            self._chapters_by_book.setdefault(chapter.book_id, []).append(chapter)
        for book_chapters in self._chapters_by_book.values():
            book_chapters.sort(key=lambda c: (c.ordinal, c.id))

        self._scenes_by_chapter: dict[str, list[Scene]] = {}
        for scene in scenes:
            self._scenes_by_chapter.setdefault(scene.chapter_id, []).append(scene)
        for chapter_scenes in self._scenes_by_chapter.values():
            chapter_scenes.sort(key=lambda s: (s.ordinal, s.created_at, s.id))

        ordered = sorted(scenes, key=lambda s: (self._key(s), s.created_at, s.id))
        self._positions: dict[str, StoryPosition] = {}
        for seq, scene in enumerate(ordered):
            book_ord, chapter_ord, scene_ord = self._key(scene)
            self._positions[scene.id] = StoryPosition(
                book=book_ord,
                chapter=chapter_ord,
                scene=scene_ord,
                story_time=scene.story_time,
                sequence=seq,
            )

    def _key(self, scene: Scene) -> tuple[int, int, int]:
        book = self.books.get(scene.book_id)
        chapter = self.chapters.get(scene.chapter_id)
        return (
            book.ordinal if book else 0,
            chapter.ordinal if chapter else 0,
            scene.ordinal,
        )

    def position(self, scene_id: str) -> StoryPosition | None:
        return self._positions.get(scene_id)

    def chapter_scenes(self, chapter_id: str) -> list[Scene]:
        """Scenes of a chapter in ordinal order."""
        return list(self._scenes_by_chapter.get(chapter_id, []))

    def previous_chapter(self, chapter_id: str) -> Chapter | None:
        """The chapter immediately before this one in the same book."""
        chapter = self.chapters.get(chapter_id)
        if chapter is None:
            return None
        siblings = self._chapters_by_book.get(chapter.book_id, [])
        for idx, other in enumerate(siblings):
            if other.id == chapter_id:
                return siblings[idx - 1] if idx > 0 else None
        return None

    def scenes_before(self, scene_id: str) -> list[Scene]:
        """All scenes positioned strictly before the given scene."""
        target = self._positions.get(scene_id)
        if target is None:
            return []
        return [
            self.scenes[sid]
            for sid, pos in self._positions.items()
            if pos.sequence < target.sequence
        ]

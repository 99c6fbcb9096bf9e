"""Preceding-scene window for continuity."""

from __future__ import annotations

from dataclasses import dataclass

from canonguard.story.models import Scene
from canonguard.story.timeline import Timeline

MISSING_SUMMARY = "[No summary available]"


@dataclass(frozen=True)
class WindowEntry:
    scene_id: str
    label: str
    summary: str
    has_summary: bool


class SceneWindowSelector:
    """Picks up to N scenes before the target, oldest first.

    Walks backward through the target's chapter, then through preceding
    chapters of the same book. Never crosses into another book.
    """

    def __init__(self, timeline: Timeline) -> None:
        self.timeline = timeline

    def select(self, target: Scene, window_size: int) -> list[WindowEntry]:
        if window_size <= 0:
            return []

        picked: list[Scene] = []
        same_chapter = [
            s for s in self.timeline.chapter_scenes(target.chapter_id)
            if (s.ordinal, s.created_at, s.id) < (target.ordinal, target.created_at, target.id)
        ]
        picked.extend(reversed(same_chapter))

        chapter = self.timeline.previous_chapter(target.chapter_id)
        while len(picked) < window_size and chapter is not None:
            picked.extend(reversed(self.timeline.chapter_scenes(chapter.id)))
            chapter = self.timeline.previous_chapter(chapter.id)

        window = picked[:window_size]
        window.reverse()
        return [self._entry(scene) for scene in window]

    @staticmethod
    def _entry(scene: Scene) -> WindowEntry:
        summary = (scene.summary or "").strip()
        return WindowEntry(
            scene_id=scene.id,
            label=scene.label,
            summary=summary or MISSING_SUMMARY,
            has_summary=bool(summary),
        )

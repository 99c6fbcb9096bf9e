#!/usr/bin/env python3
"""Demo: Using canonguard as a Python library.

This shows how to compose context programmatically, not just from the CLI.
"""

import asyncio

from canonguard.context.engine import ContextComposer
from canonguard.exceptions import BudgetInfeasibleError
from canonguard.story.repository import InMemoryStoryRepository

STORY = {
    "books": [{"id": "b1", "project_id": "demo", "title": "Book One", "ordinal": 0}],
    "chapters": [{"id": "c1", "book_id": "b1", "title": "Arrival", "ordinal": 0}],
    "scenes": [
        {"id": f"s{n}", "project_id": "demo", "book_id": "b1", "chapter_id": "c1",
         "ordinal": n, "title": f"Scene {n}", "summary": f"Things happen in scene {n}.",
         "content": f"Draft of scene {n}.", "tagged_entity_ids": ["mara"]}
        for n in range(1, 8)
    ],
    "entities": [
        {"id": "mara", "project_id": "demo", "kind": "character", "name": "Mara",
         "traits": ["patient", "left-handed"]},
    ],
    "facts": [
        {"id": "f1", "entity_id": "mara", "fact": "grew up by the sea",
         "reveal_state": "REVEALED"},
        {"id": "f2", "entity_id": "mara", "fact": "is the lost heir",
         "reveal_state": "REDACTED_UNTIL_SCENE", "reveal_scene_id": "s6"},
    ],
}


async def main():
    repo = InMemoryStoryRepository.from_dict(STORY)
    composer = ContextComposer(repo)

    # 1. Writer-facing context: gated facts are withheld
    print("--- Composing for Scene 4 ---")
    result = await composer.compose("s4", window_scenes=2, max_tokens=1000)
    print(result.summary())
    for r in result.redactions:
        print(f"  withheld {r.fact_id}: {r.reason}")

    # 2. Author tools may see everything, spoiler-flagged
    print("\n--- Author override ---")
    result = await composer.compose("s4", include_spoilers_for_author_tools=True)
    for fact in result.prompt.canon_facts:
        print(f"  {fact}")

    # 3. The same request is served from cache
    again = await composer.compose("s4", window_scenes=2, max_tokens=1000)
    print(f"\nFingerprint: {again.fingerprint}")

    # 4. A budget too small for the fixed prompt text is rejected
    try:
        await composer.compose("s4", max_tokens=100)
    except BudgetInfeasibleError as e:
        print(f"\nRejected: {e}")

    # 5. The API payload
    print("\n--- Prompt ---")
    print(result.render())


if __name__ == "__main__":
    asyncio.run(main())

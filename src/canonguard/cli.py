"""Command-line interface for canonguard."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from canonguard import __version__
from canonguard.config import (
    STORY_FILE,
    ProjectConfig,
    find_project_root,
    get_canonguard_dir,
    load_config,
    save_config,
    set_config_value,
)
from canonguard.exceptions import CanonGuardError, ConfigError
from canonguard.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No canonguard project found. Run 'canonguard init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_config(root: Path) -> ProjectConfig:
    try:
        return load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)


def _load_story(root: Path, story: str | None):
    """Load the story export into an in-memory repository."""
    from canonguard.story.repository import load_story_file

    story_path = Path(story) if story else get_canonguard_dir(root) / STORY_FILE
    if not story_path.exists():
        console.error(f"No story export found at {story_path}. Pass one with --story.")
        sys.exit(1)
    return load_story_file(story_path)


def _load_vectors(vectors: str | None):
    if not vectors:
        return None
    from canonguard.embeddings.base import StaticEmbeddingProvider

    return StaticEmbeddingProvider(json.loads(Path(vectors).read_text()))


def _make_composer(root: Path, config: ProjectConfig, story: str | None, vectors: str | None):
    from canonguard.context.engine import ContextComposer

    return ContextComposer(
        _load_story(root, story),
        embeddings=_load_vectors(vectors),
        config=config,
    )


def _fail(err: CanonGuardError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(err.to_response(), indent=2))
    else:
        console.error(f"{err} [{err.code}]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="canonguard")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """canonguard - spoiler-safe context for AI co-writing."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--window", default=None, type=int, help="Default preceding-scene window.")
@click.option("--max-tokens", default=None, type=int, help="Default token budget.")
def init(path: str | None, window: int | None, max_tokens: int | None):
    """Initialize canonguard configuration for a manuscript project."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing canonguard for: {root}")

    config = _load_config(root)
    config.name = root.name
    config.root_path = str(root)
    if window is not None:
        config.compose.default_window_scenes = window
    if max_tokens is not None:
        config.compose.default_max_tokens = max_tokens

    save_config(root, config)
    console.success("Configuration saved")
    story_path = get_canonguard_dir(root) / STORY_FILE
    if not story_path.exists():
        console.info(f"Export your story to {story_path} to compose context.")


# =========================================================================
# Context composition
# =========================================================================

@main.command()
@click.argument("scene_id")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--story", "-s", default=None, help="Story export JSON (default: .canonguard/story.json).")
@click.option("--vectors", default=None, help="JSON mapping of record id to embedding vector.")
@click.option("--window", "-w", default=None, type=int, help="Preceding scenes to include (1-10).")
@click.option("--max-tokens", "-b", default=None, type=int, help="Token budget (>= 100).")
@click.option("--spoilers", is_flag=True, help="Include gated facts for author tools (spoiler-flagged).")
@click.option("--model", "-m", default=None, help="Model name for token counting.")
@click.option("--json", "as_json", is_flag=True, help="Print the API response as JSON.")
def compose(
    scene_id: str, path: str | None, story: str | None, vectors: str | None,
    window: int | None, max_tokens: int | None, spoilers: bool,
    model: str | None, as_json: bool,
):
    """Compose spoiler-safe prompt context for a scene.

    Examples:

        canonguard compose scene-20

        canonguard compose scene-20 --window 5 --max-tokens 4000

        canonguard compose scene-20 --spoilers --json
    """
    root = _get_project_root(path)
    config = _load_config(root)
    composer = _make_composer(root, config, story, vectors)

    try:
        result = asyncio.run(composer.compose(
            scene_id,
            window_scenes=window,
            max_tokens=max_tokens,
            include_spoilers_for_author_tools=spoilers,
            model_name=model,
        ))
    except CanonGuardError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps(result.to_response(), indent=2))
        return

    if spoilers:
        console.warning("Author override: gated facts are included and spoiler-flagged.")
    console.show_result(result)
    console.show_redactions(result.redactions)
    console.console.print()
    console.console.print(result.render(), markup=False)


@main.command()
@click.argument("scene_id")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--story", "-s", default=None, help="Story export JSON.")
@click.option("--spoilers", is_flag=True, help="Evaluate with author override.")
def gate(scene_id: str, path: str | None, story: str | None, spoilers: bool):
    """Show which canon facts are visible at a scene and which are withheld."""
    root = _get_project_root(path)
    config = _load_config(root)
    composer = _make_composer(root, config, story, None)

    try:
        facts, redactions = asyncio.run(composer.visible_facts(scene_id, spoilers))
    except CanonGuardError as e:
        _fail(e, False)
        return

    console.show_facts(facts)
    console.show_redactions(redactions)


@main.command()
@click.argument("scene_id")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--story", "-s", default=None, help="Story export JSON.")
@click.option("--size", "-n", default=3, type=int, help="Window size.")
def window(scene_id: str, path: str | None, story: str | None, size: int):
    """Show the preceding-scene window for a scene."""
    from canonguard.context.window import SceneWindowSelector
    from canonguard.story.timeline import Timeline

    root = _get_project_root(path)
    repo = _load_story(root, story)
    scene = repo.scenes.get(scene_id)
    if scene is None:
        console.error(f"Scene '{scene_id}' not found")
        sys.exit(1)

    timeline = Timeline(
        list(repo.books.values()),
        list(repo.chapters.values()),
        [s for s in repo.scenes.values() if s.project_id == scene.project_id],
    )
    console.show_window(SceneWindowSelector(timeline).select(scene, size))


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage canonguard configuration."""
    root = _get_project_root(path)
    config = _load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: canonguard config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: canonguard config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ValidationError as e:
            console.error(f"Invalid value for {key}: {e.errors()[0]['msg']}")
            sys.exit(1)


if __name__ == "__main__":
    main()

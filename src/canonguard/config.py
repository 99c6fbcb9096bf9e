"""Configuration management for canonguard."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from canonguard.exceptions import ConfigError

CANONGUARD_DIR = ".canonguard"
CONFIG_FILE = "config.json"
STORY_FILE = "story.json"


class GateConfig(BaseModel):
    """Reveal gate behavior."""

    # "ordinal" compares authoring order; "story_time" compares the in-story
    # chronology and falls back to ordinal when a scene has no story_time.
    position_mode: Literal["ordinal", "story_time"] = "ordinal"


class RankingConfig(BaseModel):
    """Relevance ranking weights."""

    semantic_weight: float = 0.6
    recency_weight: float = 0.3
    tag_weight: float = 0.1
    recency_horizon: int = 20  # scenes
    max_candidates: int = 25


class CacheConfig(BaseModel):
    """Composed-context cache settings."""

    enabled: bool = True
    ttl_seconds: int = 300
    key_prefix: str = "ctx"


class ComposeConfig(BaseModel):
    """Request defaults and time bounds for composition."""

    default_window_scenes: int = 3
    default_max_tokens: int = 2000
    model_name: str = "claude-sonnet-4-5"
    timeout_seconds: float = 10.0
    embedding_timeout_seconds: float = 2.0
    chars_per_token: float = 3.75


class PromptConfig(BaseModel):
    """Fixed, non-droppable prompt text."""

    system: str = (
        "You are a co-author helping write a novel. Continue the manuscript "
        "in the established voice, staying consistent with the provided canon."
    )
    instructions: str = (
        "Write the next passage of the current scene. Use the preceding scene "
        "summaries for continuity and the canon facts as ground truth."
    )
    guardrails: list[str] = Field(
        default_factory=lambda: [
            "Only use the canon facts listed here; do not invent secrets about characters.",
            "Do not foreshadow or reveal plot information that is not in the provided context.",
            "Keep character names, traits and relationships consistent with the canon.",
        ]
    )


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    gate: GateConfig = Field(default_factory=GateConfig)
    ranking: RankingConfig = Field(default_factory=RankingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    compose: ComposeConfig = Field(default_factory=ComposeConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .canonguard directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CANONGUARD_DIR).is_dir():
            return current
        current = current.parent
    if (current / CANONGUARD_DIR).is_dir():
        return current
    return None


def get_canonguard_dir(root: Path) -> Path:
    """Get the .canonguard directory for a project root."""
    return root / CANONGUARD_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .canonguard/config.json."""
    config_path = get_canonguard_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise ConfigError(f"Malformed config at {config_path}: {e}") from e
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .canonguard/config.json."""
    cg_dir = get_canonguard_dir(root)
    cg_dir.mkdir(parents=True, exist_ok=True)
    config_path = cg_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'ranking.recency_horizon')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)

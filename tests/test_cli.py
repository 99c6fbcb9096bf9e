"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from canonguard.cli import main

from conftest import SECRET


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def initialized_project(story_project: Path) -> Path:
    """A story project that has been through `canonguard init`."""
    runner = CliRunner()
    result = runner.invoke(main, ["init", "--path", str(story_project)])
    assert result.exit_code == 0, f"Init failed: {result.output}"
    return story_project


class TestCLIInit:
    def test_init_basic(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0
        assert "Configuration saved" in result.output
        assert (tmp_path / ".canonguard" / "config.json").exists()

    def test_init_defaults(self, runner: CliRunner, tmp_path: Path):
        runner.invoke(main, ["init", "--path", str(tmp_path), "--window", "5", "--max-tokens", "4000"])
        data = json.loads((tmp_path / ".canonguard" / "config.json").read_text())
        assert data["compose"]["default_window_scenes"] == 5
        assert data["compose"]["default_max_tokens"] == 4000

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0


class TestCLICompose:
    def test_compose_json(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["compose", "scene-20", "--path", str(initialized_project), "--json"]
        )
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert set(payload) == {"promptObject", "redactions", "tokenEstimate"}
        assert SECRET not in result.output
        assert "fact-villain" in [r["factId"] for r in payload["redactions"]]

    def test_compose_text(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["compose", "scene-20", "--path", str(initialized_project), "-w", "2"]
        )
        assert result.exit_code == 0, result.output
        assert "## Canon" in result.output
        assert SECRET not in result.output

    def test_compose_spoilers(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main,
            ["compose", "scene-20", "--path", str(initialized_project), "--spoilers", "--json"],
        )
        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert any(SECRET in f for f in payload["promptObject"]["canonFacts"])

    def test_compose_missing_scene(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["compose", "scene-404", "--path", str(initialized_project), "--json"]
        )
        assert result.exit_code != 0
        assert json.loads(result.output)["error"]["code"] == "not_found"

    def test_compose_invalid_request(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["compose", "scene-20", "--path", str(initialized_project), "-b", "50", "--json"]
        )
        assert result.exit_code != 0
        assert json.loads(result.output)["error"]["code"] == "invalid_request"

    def test_compose_budget_infeasible(self, runner: CliRunner, initialized_project: Path):
        runner.invoke(
            main,
            ["config", "set", "prompt.guardrails", json.dumps(["Never spoil. " * 60]),
             "--path", str(initialized_project)],
        )
        result = runner.invoke(
            main, ["compose", "scene-20", "--path", str(initialized_project), "-b", "100", "--json"]
        )
        assert result.exit_code != 0
        assert json.loads(result.output)["error"]["code"] == "budget_infeasible"

    def test_compose_with_vectors(self, runner: CliRunner, initialized_project: Path):
        vectors = initialized_project / "vectors.json"
        vectors.write_text(json.dumps({"scene-20": [1.0, 0.0], "scene-2": [1.0, 0.0]}))
        result = runner.invoke(
            main,
            ["compose", "scene-20", "--path", str(initialized_project),
             "--vectors", str(vectors), "--json"],
        )
        assert result.exit_code == 0
        context = json.loads(result.output)["promptObject"]["sceneContext"]
        assert any("Scene-2:" in line for line in context)

    def test_compose_no_story(self, runner: CliRunner, tmp_path: Path):
        runner.invoke(main, ["init", "--path", str(tmp_path)])
        result = runner.invoke(main, ["compose", "scene-1", "--path", str(tmp_path)])
        assert result.exit_code != 0


class TestCLIGate:
    def test_gate(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["gate", "scene-20", "--path", str(initialized_project)])
        assert result.exit_code == 0
        assert "fact-villain" in result.output
        assert SECRET not in result.output

    def test_gate_missing_scene(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["gate", "nope", "--path", str(initialized_project)])
        assert result.exit_code != 0


class TestCLIWindow:
    def test_window(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["window", "scene-41", "--path", str(initialized_project), "-n", "3"]
        )
        assert result.exit_code == 0
        assert "Scene-38" in result.output
        assert "Scene-40" in result.output

    def test_window_missing_scene(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["window", "nope", "--path", str(initialized_project)])
        assert result.exit_code != 0


class TestCLIConfig:
    def test_config_show(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(initialized_project)])
        assert result.exit_code == 0
        assert "ranking" in result.output

    def test_config_get(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["config", "get", "ranking.recency_horizon", "--path", str(initialized_project)]
        )
        assert result.exit_code == 0
        assert "20" in result.output

    def test_config_set(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main,
            ["config", "set", "gate.position_mode", "story_time", "--path", str(initialized_project)],
        )
        assert result.exit_code == 0
        data = json.loads((initialized_project / ".canonguard" / "config.json").read_text())
        assert data["gate"]["position_mode"] == "story_time"

    def test_config_set_invalid_value(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main,
            ["config", "set", "gate.position_mode", "chapter", "--path", str(initialized_project)],
        )
        assert result.exit_code != 0

    def test_malformed_config(self, runner: CliRunner, initialized_project: Path):
        (initialized_project / ".canonguard" / "config.json").write_text("{not json")
        result = runner.invoke(main, ["config", "show", "--path", str(initialized_project)])
        assert result.exit_code != 0
        assert "Malformed config" in result.output

    def test_config_set_unknown_key(self, runner: CliRunner, initialized_project: Path):
        result = runner.invoke(
            main, ["config", "set", "nope.key", "1", "--path", str(initialized_project)]
        )
        assert result.exit_code != 0


class TestCLIVersion:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from ab.config import AppConfig, ConfigError, default_config_template, load_config, write_config


def test_template_round_trips_through_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    write_config(config_path, default_config_template())

    config = load_config(config_path)

    assert config.model.provider == "anthropic"
    assert config.agent.max_turns == 20
    assert config.workspace_root == (tmp_path / "app").resolve()
    assert config.db_path == (tmp_path / "data" / "ab.sqlite").resolve()
    assert config.transcript_dir == (tmp_path / "data" / "transcripts").resolve()


def test_template_copies_are_independent() -> None:
    first = default_config_template()
    first["agent"]["max_turns"] = 1

    assert default_config_template()["agent"]["max_turns"] == 20


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "absent.yaml")


def test_non_mapping_document_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping at the top level"):
        load_config(config_path)


def test_unknown_keys_and_bad_values_are_reported_together(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        yaml.safe_dump({"agent": {"max_turns": 0}, "verifier": {"colour": "blue"}}),
        encoding="utf-8",
    )

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_path)

    message = str(excinfo.value)
    assert message.startswith("Invalid configuration:")
    assert "agent.max_turns" in message
    assert "verifier.colour" in message


def test_defaults_apply_to_empty_document(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("", encoding="utf-8")

    config = load_config(config_path)

    assert config.workspace_root == tmp_path.resolve()
    assert config.db_path == (tmp_path / "data" / "ab.sqlite").resolve()
    assert config.security.allowed_workspaces == ["**"]
    assert config.tools.web_search.enabled is False


def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    target = tmp_path / "elsewhere"

    config = AppConfig.from_mapping({"paths": {"workspace": str(target)}}, base_dir=Path("/unused"))

    assert config.workspace_root == target


def test_api_key_falls_back_to_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")

    assert AppConfig().model.resolved_api_key() == "from-env"
    assert AppConfig.from_mapping({"model": {"api_key": "inline"}}).model.resolved_api_key() == "inline"

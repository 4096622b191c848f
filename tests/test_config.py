"""Tests for .berth/config.yaml handling."""

import pytest

from berth.config import (
    Config,
    default_config,
    load_config,
    parse_config,
    read_config,
    write_config,
)
from berth.errors import ConfigError


class TestParseConfig:
    def test_defaults(self):
        cfg = default_config()
        assert cfg.model == "opus"
        assert cfg.execution.max_parallel == 4
        assert cfg.execution.timeout_per_bead == 600
        assert cfg.execution.auto_commit is True
        assert cfg.execution.claude_command == ["claude"]
        assert cfg.execution.circuit_breaker_threshold == 3
        assert cfg.verify_pipeline == []

    def test_sections(self):
        cfg = parse_config({
            "model": "sonnet",
            "project": {"name": "shop", "language": "python"},
            "execution": {"max_parallel": 2, "auto_commit": False, "claude_command": "claude --debug"},
            "verify_pipeline": ["ruff check .", "pytest -q"],
            "verify": {"security": "bandit -r src"},
        })

        assert cfg.model == "sonnet"
        assert cfg.project.name == "shop"
        assert cfg.execution.max_parallel == 2
        assert cfg.execution.auto_commit is False
        assert cfg.execution.claude_command == ["claude", "--debug"]
        assert cfg.verify_pipeline == ["ruff check .", "pytest -q"]
        assert cfg.verify.security == "bandit -r src"

    def test_unknown_keys_ignored(self):
        cfg = parse_config({"execution": {"max_retries": 3}, "knowledge_graph": {"enabled": "auto"}})
        assert cfg.execution == Config().execution

    def test_wrong_types_rejected(self):
        with pytest.raises(ConfigError):
            parse_config({"execution": {"max_parallel": "many"}})
        with pytest.raises(ConfigError):
            parse_config({"execution": {"auto_commit": "yes"}})
        with pytest.raises(ConfigError):
            parse_config({"verify_pipeline": "pytest"})


class TestConfigFiles:
    def test_round_trip(self, tmp_path):
        cfg = default_config()
        cfg.verify_pipeline = ["make test"]
        write_config(str(tmp_path), cfg)

        assert read_config(str(tmp_path)) == cfg

    def test_read_missing_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            read_config(str(tmp_path))

    def test_load_without_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("BERTH_MODEL", raising=False)
        monkeypatch.delenv("BERTH_MAX_PARALLEL", raising=False)
        monkeypatch.delenv("BERTH_CLAUDE_BIN", raising=False)
        assert load_config(str(tmp_path)) == default_config()

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BERTH_MODEL", "haiku")
        monkeypatch.setenv("BERTH_MAX_PARALLEL", "8")
        monkeypatch.setenv("BERTH_CLAUDE_BIN", "/opt/claude --fast")

        cfg = load_config(str(tmp_path))

        assert cfg.model == "haiku"
        assert cfg.execution.max_parallel == 8
        assert cfg.execution.claude_command == ["/opt/claude", "--fast"]

    def test_bad_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BERTH_MAX_PARALLEL", "lots")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

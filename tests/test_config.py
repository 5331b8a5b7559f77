"""Tests for kryten_arcade.config module."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from kryten_arcade.config import (
    ArcadeConfig,
    CurrencyConfig,
    PollsConfig,
    StoreConfig,
    load_config,
)

MINIMAL = {
    "nats": {"servers": ["nats://localhost:4222"]},
    "channels": [{"domain": "cytu.be", "channel": "t"}],
}


class TestArcadeConfig:
    """Model parsing and defaults."""

    def test_minimal_config(self):
        """Only nats and channels are required."""
        cfg = ArcadeConfig(**MINIMAL)
        assert cfg.store.backend == "sqlite"
        assert cfg.store.path == "arcade.db"
        assert cfg.currency.plural == "chips"
        assert cfg.bot.username == "ArcadeBot"
        assert cfg.ignored_users == []

    def test_full_config(self, sample_config_dict: dict):
        cfg = ArcadeConfig(**sample_config_dict)
        assert cfg.store.backend == "memory"
        assert cfg.bot.username == "TestBot"
        assert cfg.roles.vips == ["VipVera"]
        assert cfg.channels[0].channel == "testchannel"

    def test_game_defaults(self):
        cfg = ArcadeConfig(**MINIMAL)
        assert cfg.ledger.starting_stake == 100
        assert cfg.gambling.blackjack.deal_cooldown_seconds == 15
        assert cfg.gambling.streaks.win_milestones[3] == 25
        assert cfg.polls.duration_seconds == 60
        assert cfg.events.boss.reward_pool == 100
        assert cfg.events.auto_start.enabled is False
        assert cfg.commands.prefix == "!"

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            StoreConfig(backend="mongodb")

    def test_custom_currency(self):
        cc = CurrencyConfig(name="token", plural="tokens", symbol="T")
        assert cc.plural == "tokens"

    def test_poll_limits(self):
        polls = PollsConfig(max_options=4, blocked_words=["spoiler"])
        assert polls.max_options == 4
        assert polls.blocked_words == ["spoiler"]


class TestLoadConfig:
    """YAML loading with environment variable expansion."""

    def _write(self, tmp_path: Path, data: dict) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(data))
        return str(path)

    def test_load_valid_yaml(self, sample_config_dict: dict, tmp_path: Path):
        cfg = load_config(self._write(tmp_path, sample_config_dict))
        assert cfg.currency.symbol == "🪙"
        assert len(cfg.channels) == 1

    def test_load_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/path/config.yaml")

    def test_env_var_expansion(self, sample_config_dict: dict, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("ARCADE_REDIS_URL", "redis://cache:6379/2")
        sample_config_dict["store"] = {"backend": "redis", "url": "${ARCADE_REDIS_URL}"}
        cfg = load_config(self._write(tmp_path, sample_config_dict))
        assert cfg.store.url == "redis://cache:6379/2"

    def test_env_var_with_default(self, sample_config_dict: dict, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("UNSET_ARCADE_VAR", raising=False)
        sample_config_dict["store"] = {"path": "${UNSET_ARCADE_VAR:-fallback.db}"}
        cfg = load_config(self._write(tmp_path, sample_config_dict))
        assert cfg.store.path == "fallback.db"

    def test_env_var_in_lists(self, sample_config_dict: dict, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("ARCADE_IGNORED", "SpamBot")
        sample_config_dict["ignored_users"] = ["${ARCADE_IGNORED}", "Other"]
        cfg = load_config(self._write(tmp_path, sample_config_dict))
        assert cfg.ignored_users == ["SpamBot", "Other"]

    def test_invalid_yaml_structure(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a\n- list\n")
        with pytest.raises(ValueError, match="YAML mapping"):
            load_config(str(path))

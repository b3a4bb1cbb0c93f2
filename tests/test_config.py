"""Tests for axiomtrade config loading, saving, and dot-notation access."""

from __future__ import annotations

import yaml

from axiomtrade.config import (
    DEFAULT_ENDPOINTS,
    Config,
    expand_path,
    get_config_value,
    load_config,
    save_config,
)


def test_load_default_config(tmp_path):
    """Non-existent config path returns Config() defaults."""
    config = load_config(tmp_path / "nonexistent.yaml")
    assert config == Config()
    assert config.api.endpoints == DEFAULT_ENDPOINTS
    assert config.retry.max_delay == 10.0
    assert not config.mailbox.is_configured


def test_expand_env_vars(tmp_path, monkeypatch):
    """${VAR} in config values is expanded from environment."""
    monkeypatch.setenv("TEST_MAILBOX_PW", "imap-secret")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("mailbox:\n  address: bot@inbox.lv\n  password: ${TEST_MAILBOX_PW}\n")
    config = load_config(config_file)
    assert config.mailbox.password == "imap-secret"
    assert config.mailbox.is_configured


def test_unknown_env_var_left_as_is(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("api:\n  user_agent: ${SURELY_NOT_SET_ANYWHERE}\n")
    assert load_config(config_file).api.user_agent == "${SURELY_NOT_SET_ANYWHERE}"


def test_env_overlay_wins_over_yaml(tmp_path, monkeypatch):
    """AXIOM_* variables override file values and are type-converted."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("auth:\n  otp_timeout: 60\n")
    monkeypatch.setenv("AXIOM_OTP_TIMEOUT", "90")
    monkeypatch.setenv("AXIOM_AUTO_SAVE", "false")
    monkeypatch.setenv("AXIOM_RETRY_MAX_DELAY", "2.5")
    monkeypatch.setenv("AXIOM_MAILBOX_ADDRESS", "env@inbox.lv")
    config = load_config(config_file)
    assert config.auth.otp_timeout == 90
    assert config.auth.auto_save is False
    assert config.retry.max_delay == 2.5
    assert config.mailbox.address == "env@inbox.lv"


def test_endpoint_limits_from_yaml(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "rate_limit:\n  endpoints:\n    /api/orders:\n      max_requests: 5\n      window: 1\n"
    )
    config = load_config(config_file)
    assert config.rate_limit.endpoints["/api/orders"].max_requests == 5


def test_save_and_load_config(tmp_path):
    """Round-trip: save then load returns the same settings."""
    config = Config()
    config.api.timeout = 12.0
    config.auth.otp_timeout = 45

    config_file = tmp_path / "config.yaml"
    save_config(config, config_file)
    loaded = load_config(config_file)

    assert loaded.api.timeout == 12.0
    assert loaded.auth.otp_timeout == 45


def test_save_never_writes_mailbox_password(tmp_path):
    config = Config()
    config.mailbox.address = "bot@inbox.lv"
    config.mailbox.password = "do-not-persist"
    config_file = tmp_path / "config.yaml"
    save_config(config, config_file)

    assert "do-not-persist" not in config_file.read_text()
    assert yaml.safe_load(config_file.read_text())["mailbox"]["address"] == "bot@inbox.lv"
    assert config.mailbox.password == "do-not-persist"


def test_get_config_value():
    config = Config()
    assert get_config_value(config, "auth.access_token_lifetime") == 3600
    assert get_config_value(config, "rate_limit.global_max_requests") == 300
    assert get_config_value(config, "auth.nope") is None
    assert get_config_value(config, "auth.otp_timeout.deeper") is None


def test_expand_path(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert expand_path("~/.axiomtrade/tokens.json") == tmp_path / ".axiomtrade" / "tokens.json"

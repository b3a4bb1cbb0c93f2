"""Configuration system for axiomtrade. YAML-based with env var expansion and env var overlay."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_ENDPOINTS = [
    "https://api2.axiom.trade",
    "https://api3.axiom.trade",
    "https://api6.axiom.trade",
    "https://api7.axiom.trade",
    "https://api8.axiom.trade",
    "https://api9.axiom.trade",
    "https://api10.axiom.trade",
]


# --- Config Models ---


class ApiConfig(BaseModel):
    endpoints: list[str] = Field(default_factory=lambda: list(DEFAULT_ENDPOINTS))
    timeout: float = 30.0
    user_agent: str = ""  # empty = pick a random desktop browser UA
    origin: str = "https://axiom.trade"


class AuthConfig(BaseModel):
    token_path: str = "~/.axiomtrade/tokens.json"
    session_path: str = "~/.axiomtrade/session.json"
    auto_save: bool = True
    access_token_lifetime: int = 3600  # seconds
    otp_timeout: int = 120
    otp_poll_interval: int = 5


class MailboxConfig(BaseModel):
    address: str = ""
    password: str = ""
    host: str = "mail.inbox.lv"
    port: int = 993
    folder: str = "INBOX"
    subject: str = "Your Axiom security code"
    lookback_minutes: int = 3

    @property
    def is_configured(self) -> bool:
        return bool(self.address and self.password)


class EndpointLimit(BaseModel):
    max_requests: int
    window: float = 60.0


class RateLimitConfig(BaseModel):
    global_max_requests: int = 300
    global_window: float = 60.0
    default_max_requests: int = 100
    default_window: float = 60.0
    endpoints: dict[str, EndpointLimit] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


class TurnkeyConfig(BaseModel):
    base_url: str = "https://api.turnkey.com"
    client_version: str = "@turnkey/sdk-server@1.7.3"
    timeout: float = 30.0


class LoggingConfig(BaseModel):
    format: str = "text"  # "text" | "json"
    level: str = "WARNING"


class Config(BaseModel):
    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    mailbox: MailboxConfig = Field(default_factory=MailboxConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    # The enhanced client caps backoff lower than the bare retry policy.
    retry: RetryConfig = Field(default_factory=lambda: RetryConfig(max_delay=10.0))
    turnkey: TurnkeyConfig = Field(default_factory=TurnkeyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# --- Config Loading ---

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def get_config_dir() -> Path:
    return Path.home() / ".axiomtrade"


def get_config_path() -> Path:
    return get_config_dir() / "config.yaml"


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR} in string values."""
    if isinstance(data, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), data)
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(v) for v in data]
    return data


def expand_path(path: str) -> Path:
    """Expand ~ and env vars in path string."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


# Mapping of AXIOM_* env var suffixes to (section, field) tuples.
_ENV_VAR_MAP: dict[str, tuple[str, str]] = {
    "API_TIMEOUT": ("api", "timeout"),
    "USER_AGENT": ("api", "user_agent"),
    "TOKEN_PATH": ("auth", "token_path"),
    "SESSION_PATH": ("auth", "session_path"),
    "AUTO_SAVE": ("auth", "auto_save"),
    "OTP_TIMEOUT": ("auth", "otp_timeout"),
    "MAILBOX_ADDRESS": ("mailbox", "address"),
    "MAILBOX_PASSWORD": ("mailbox", "password"),
    "MAILBOX_HOST": ("mailbox", "host"),
    "MAILBOX_PORT": ("mailbox", "port"),
    "RETRY_MAX_RETRIES": ("retry", "max_retries"),
    "RETRY_MAX_DELAY": ("retry", "max_delay"),
    "TURNKEY_BASE_URL": ("turnkey", "base_url"),
    "LOG_FORMAT": ("logging", "format"),
    "LOG_LEVEL": ("logging", "level"),
}


def _get_section_models() -> dict[str, type[BaseModel]]:
    return {
        "api": ApiConfig,
        "auth": AuthConfig,
        "mailbox": MailboxConfig,
        "rate_limit": RateLimitConfig,
        "retry": RetryConfig,
        "turnkey": TurnkeyConfig,
        "logging": LoggingConfig,
    }


def _apply_env_overlay(data: dict[str, Any]) -> dict[str, Any]:
    """Apply AXIOM_* environment variables on top of YAML data dict.

    Converts values to the correct type based on Pydantic field annotations.
    The mailbox password is applied but never logged.
    """
    section_models = _get_section_models()

    for env_suffix, (section, field) in _ENV_VAR_MAP.items():
        raw_val = os.environ.get(f"AXIOM_{env_suffix}")
        if raw_val is None:
            continue

        model_cls = section_models.get(section)
        target_type: type = str
        if model_cls is not None:
            field_info = model_cls.model_fields.get(field)
            if field_info is not None and field_info.annotation in (int, bool, float):
                target_type = field_info.annotation  # type: ignore[assignment]

        try:
            if target_type is bool:
                typed_val: Any = raw_val.lower() in ("1", "true", "yes")
            else:
                typed_val = target_type(raw_val)
        except (ValueError, TypeError):
            typed_val = raw_val  # pydantic will reject it with a proper message

        if section not in data or not isinstance(data[section], dict):
            data[section] = {}
        data[section][field] = typed_val

    return data


def load_config(path: Path | None = None) -> Config:
    """Load config from YAML, expanding env vars, then applying AXIOM_* env overlay."""
    config_path = path or get_config_path()
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        data = _expand_env_vars(raw)
    else:
        data = {}
    data = _apply_env_overlay(data)
    return Config(**data)


def save_config(config: Config, path: Path | None = None) -> None:
    """Save config to YAML. The mailbox password is never written out."""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump()
    data["mailbox"]["password"] = ""
    with open(config_path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_config_value(config: Config, key_path: str) -> Any:
    """Get nested config value via dot notation (e.g. 'auth.token_path')."""
    obj: Any = config
    for part in key_path.split("."):
        if isinstance(obj, BaseModel):
            obj = getattr(obj, part, None)
        elif isinstance(obj, dict):
            obj = obj.get(part)
        else:
            return None
    return obj

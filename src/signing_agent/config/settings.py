"""
config/settings.py — Signing Agent Runtime Settings

Merges config.yaml (structure/defaults) with .env and the environment
(secrets). Pydantic-powered — all fields are validated and typed.

  - Field validators reject bad ports, non-positive delays, non-http(s)
    partner URLs and unknown log levels at parse time
  - validate_all() performs full startup validation and raises ConfigError
    listing every problem found (missing API key, unreadable key file)
  - load_settings() respects SIGNING_AGENT_CONFIG as a fallback when no
    explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from signing_agent.exceptions import ConfigError

__all__ = [
    "AgentConfig",
    "ConfigError",
    "FeedConfig",
    "LoggingConfig",
    "PartnerConfig",
    "PolicyConfig",
    "ServiceConfig",
    "Settings",
    "get_settings",
    "load_settings",
]

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentConfig(BaseModel):
    name: str = "test-agent"
    private_key_path: str = "private.pem"
    company_id: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("agent.name must not be empty")
        return v


class ServiceConfig(BaseModel):
    """The primary (custody/signing) service the agent registers with."""
    host: str = "localhost"
    port: int = 8007
    request_timeout_seconds: float = 30.0

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        if not (1 <= v <= 65535):
            raise ValueError(f"service.port must be between 1 and 65535, got {v}")
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("service.request_timeout_seconds must be > 0")
        return v


class PartnerConfig(BaseModel):
    """The partner (transaction detail) service. Every call is signed."""
    base_url: str = "https://play-api.qredo.network"
    api_base_path: str = "/api/v1/p"
    request_timeout_seconds: float = 30.0

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"partner.base_url must start with http:// or https://, got '{v}'"
            )
        return v.rstrip("/")

    @field_validator("api_base_path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        v = v.rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("request_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("partner.request_timeout_seconds must be > 0")
        return v


class FeedConfig(BaseModel):
    reconnect_delay_seconds: float = 5.0
    ping_interval_seconds: Optional[float] = 20.0

    @field_validator("reconnect_delay_seconds")
    @classmethod
    def _positive_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("feed.reconnect_delay_seconds must be > 0")
        return v


class PolicyConfig(BaseModel):
    """
    Limits applied around the approval policy. Timeouts of None disable the
    bound. max_net_amount is used by the built-in AmountLimitPolicy only.
    """
    timeout_seconds: Optional[float] = 60.0
    detail_timeout_seconds: Optional[float] = 30.0
    max_net_amount: float = 100_000

    @field_validator("timeout_seconds", "detail_timeout_seconds")
    @classmethod
    def _positive_or_none(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("policy timeouts must be > 0 (or null to disable)")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Signing agent runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -- Secrets from .env ---------------------------------------------------
    api_key: Optional[str] = Field(default=None, alias="AGENT_API_KEY")
    company_id: Optional[str] = Field(default=None, alias="AGENT_COMPANY_ID")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentConfig = Field(default_factory=AgentConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    partner: PartnerConfig = Field(default_factory=PartnerConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("company_id", mode="before")
    @classmethod
    def _blank_company_is_none(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v)

    # -- Convenience properties ----------------------------------------------

    @property
    def effective_company_id(self) -> Optional[str]:
        """AGENT_COMPANY_ID wins over agent.company_id from YAML."""
        return self.company_id or self.agent.company_id

    @property
    def private_key_path(self) -> Path:
        return Path(self.agent.private_key_path).expanduser()

    @property
    def log_level(self) -> str:
        return self.logging.level

    def read_private_key(self) -> bytes:
        """Read the PEM file named by agent.private_key_path."""
        try:
            return self.private_key_path.read_bytes()
        except OSError as e:
            raise ConfigError(
                f"Cannot read private key '{self.private_key_path}': {e}"
            ) from e

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem.

        Pydantic validators catch type/value errors at parse time; this
        catches what only exists at runtime (secrets, files).
        """
        errors: list[str] = []

        if not self.api_key:
            errors.append("AGENT_API_KEY must be set in the environment or .env file.")

        key_path = self.private_key_path
        if not key_path.is_file():
            errors.append(
                f"agent.private_key_path '{key_path}' does not exist or is not a file."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nSigning agent startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"agent", "service", "partner", "feed", "policy", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. SIGNING_AGENT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("SIGNING_AGENT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            yaml_data = _load_yaml(_resolve_config_path(None))
            _singleton = Settings(
                **{k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
            )
    return _singleton

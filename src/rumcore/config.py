# src/rumcore/config.py
"""
Configuration schema and loading for rumcore clients.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class FeatureSettings(BaseModel):
    """Built-in producer switches.

    The error, http and route producers are on unless disabled; console
    capture is opt-in.
    """

    model_config = {"frozen": True}

    error: bool = True
    http: bool = True
    route: bool = True
    console: bool = False

    def enabled(self) -> list[str]:
        """Names of enabled built-in producers, in registration order."""
        return [name for name in ("error", "http", "route", "console") if getattr(self, name)]


class TransportSettings(BaseModel):
    """Batching, delivery and backlog tuning for the Transport.

    Example YAML:
        transport:
          batch_size: 20
          flush_delay_ms: 2000
          backlog_dir: /var/tmp/rum
    """

    model_config = {"frozen": True}

    batch_size: int = Field(default=20, gt=0, description="Queue size that forces an urgent flush")
    flush_delay_ms: int = Field(default=2000, gt=0, description="Quiescence delay before a debounced flush")
    beacon: bool = Field(default=True, description="Use the fire-and-forget beacon sender first")
    pixel_timeout_ms: int = Field(default=1200, gt=0, description="Bounded wait for the GET fallback")
    request_timeout_ms: int = Field(default=5000, gt=0, description="Timeout for the POST strategy")
    backlog_dir: Path | None = Field(
        default=None,
        description="Directory for the durable offline backlog (None keeps it in memory)",
    )
    backlog_capacity: int = Field(default=2000, gt=0, description="Newest events retained offline")


class RumSettings(BaseModel):
    """Top-level client configuration.

    app_id and release are required and must be non-empty; everything else
    has a default.
    """

    model_config = {"frozen": True}

    app_id: str = Field(min_length=1, description="Application identity reported with every batch")
    release: str = Field(min_length=1, description="Release identity reported with every batch")
    env: str = Field(default="prod")
    endpoint: str | None = Field(
        default=None,
        description="Collector URL; None means local mode (events are fanned out, never shipped)",
    )
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    allow_domains: list[str] = Field(default_factory=list)
    allow_url_params: list[str] = Field(default_factory=list)
    features: FeatureSettings = Field(default_factory=FeatureSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    install_signal_handlers: bool = Field(
        default=False,
        description="Flush urgently on SIGTERM (main thread only)",
    )

    @field_validator("app_id", "release")
    @classmethod
    def validate_identity(cls, v: str) -> str:
        """Identity strings must contain something other than whitespace."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"endpoint must be an http(s) URL, got {v!r}")
        return v


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path) -> RumSettings:
    """Load settings from a YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (RUM_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: RUM_TRANSPORT__BATCH_SIZE for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="RUM",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    return RumSettings(**raw_config)

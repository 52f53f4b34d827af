from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ratecard_recon.models.config_models import (
    AppConfig,
    DatabaseConfig,
    DefaultsConfig,
    LabelConfig,
    SessionConfig,
    SettlementConfig,
)

"""Config loader.

Responsibilities:
- Load the YAML config (default ``config/ratecards.yml``)
- Validate it against ``config_schema.json`` (unknown keys rejected)
- Apply defaults for every omitted key
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "CONFIG_ENV_VAR",
    "load_config",
    "resolve_config_path",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/ratecards.yml")
CONFIG_ENV_VAR = "RATECARD_CONFIG"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: If the schema file is missing or unreadable, or the
            config data violates it (unknown keys, wrong types, ranges).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def resolve_config_path(explicit: str | Path | None) -> Path | None:
    """Pick the config file: explicit argument, then env var, then the default if present."""
    if explicit:
        return Path(explicit)
    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def load_config(path: Path | None) -> AppConfig:
    """Load and validate configuration.

    ``path=None`` returns the built-in defaults. A path that does not exist
    is an error (the caller asked for that file explicitly).
    """
    if path is None:
        return AppConfig()
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)

    sessions_raw = data.get("sessions") or {}
    settlement_raw = data.get("settlement") or {}
    defaults_raw = data.get("defaults") or {}
    labels_raw = data.get("labels") or {}
    db_raw = data.get("database") or {}

    base_sessions = SessionConfig()
    sessions = SessionConfig(
        ttl_seconds=sessions_raw.get("ttl_seconds", base_sessions.ttl_seconds),
        capacity=sessions_raw.get("capacity", base_sessions.capacity),
        sweep_interval_seconds=sessions_raw.get(
            "sweep_interval_seconds", base_sessions.sweep_interval_seconds
        ),
    )
    settlement = SettlementConfig(
        mismatch_tolerance=settlement_raw.get(
            "mismatch_tolerance", SettlementConfig().mismatch_tolerance
        ),
    )
    base_defaults = DefaultsConfig()
    defaults = DefaultsConfig(
        gst_percent=defaults_raw.get("gst_percent", base_defaults.gst_percent),
        tcs_percent=defaults_raw.get("tcs_percent", base_defaults.tcs_percent),
        grace_days=defaults_raw.get("grace_days", base_defaults.grace_days),
    )

    # Configured labels extend the built-in lookup rather than replacing it
    base_labels = LabelConfig()
    labels = LabelConfig(
        platforms={**base_labels.platforms, **(labels_raw.get("platforms") or {})},
        categories={**base_labels.categories, **(labels_raw.get("categories") or {})},
    )

    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return AppConfig(
        sessions=sessions,
        settlement=settlement,
        defaults=defaults,
        labels=labels,
        database=db,
        error_log_dir=data.get("error_log_dir"),
    )

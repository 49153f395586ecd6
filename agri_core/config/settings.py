# =============================================================================
# agri_core/config/settings.py
# Offline Sync Settings: defaults <- secrets.toml <- environment
# =============================================================================
"""
Settings for the offline sync library.

Values are layered, later sources winning:

1. Defaults declared on ``SyncSettings``
2. A ``secrets.toml`` file (``.streamlit/secrets.toml`` layout)::

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [offline_sync]
    db_path = "local_data/agri_offline.db"
    tracked_collections = ["farm_statistics", "yield_tracking"]
    max_retries = 5
    backoff_base_seconds = 300

3. Environment variables: ``SUPABASE_URL``, ``SUPABASE_KEY`` and
   ``AGRI_SYNC_<FIELD>`` for every other field (e.g. ``AGRI_SYNC_MAX_RETRIES``).
   Lists are comma separated.
"""

from __future__ import annotations
import os
import re
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import logging

from agri_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
DEFAULT_DB_PATH = Path("local_data") / "agri_offline.db"

# Collections cached for offline reads (farm statistics dashboards)
DEFAULT_TRACKED_COLLECTIONS = (
    "farm_statistics",
    "yield_tracking",
    "resource_usage",
    "farm_budget",
    "revenue_tracking",
    "farm_analytics",
)

COLLECTION_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")

ENV_PREFIX = "AGRI_SYNC_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class SyncSettings:
    """Configuration for the offline queue, sync engine and connectivity monitor."""

    # Remote service
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    id_column: str = "id"
    updated_at_column: str = "updated_at"

    # Local durable store
    db_path: Path = DEFAULT_DB_PATH
    tracked_collections: List[str] = field(
        default_factory=lambda: list(DEFAULT_TRACKED_COLLECTIONS)
    )

    # Retry policy: delay = base * 2^(retry - 1), plateauing at max
    max_retries: int = 5
    backoff_base_seconds: float = 300.0     # 5 minutes
    backoff_max_seconds: float = 3600.0     # 1 hour
    classify_permanent_errors: bool = False

    # Scheduling
    background_sync: bool = True
    sync_interval: float = 30.0             # Seconds between periodic passes

    # Connectivity checks
    check_interval_online: float = 30.0
    check_interval_offline: float = 10.0
    connection_timeout: float = 5.0

    def validate(self) -> SyncSettings:
        """Raise ConfigurationError on unusable values; return self."""
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be at least 1",
                config_key="max_retries",
                expected_type="int >= 1",
            )
        for key in ("backoff_base_seconds", "sync_interval",
                    "check_interval_online", "check_interval_offline",
                    "connection_timeout"):
            if getattr(self, key) <= 0:
                raise ConfigurationError(
                    f"{key} must be positive",
                    config_key=key,
                    expected_type="float > 0",
                )
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ConfigurationError(
                "backoff_max_seconds must not be below backoff_base_seconds",
                config_key="backoff_max_seconds",
            )
        for name in self.tracked_collections:
            if not COLLECTION_NAME_PATTERN.match(name):
                raise ConfigurationError(
                    f"Invalid collection name: {name!r}",
                    config_key="tracked_collections",
                    expected_type="lowercase identifier",
                )
        if len(set(self.tracked_collections)) != len(self.tracked_collections):
            raise ConfigurationError(
                "tracked_collections contains duplicates",
                config_key="tracked_collections",
            )
        return self

    @property
    def has_remote(self) -> bool:
        """True when Supabase credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)


def _coerce(name: str, value: Any, current: Any) -> Any:
    """Convert a raw TOML/env value to the type of the field's default."""
    if name == "db_path":
        return Path(value)
    if name == "tracked_collections":
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(part) for part in value]
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(
            f"Cannot parse boolean for {name}: {value!r}",
            config_key=name,
            expected_type="bool",
        )
    if isinstance(current, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Cannot parse integer for {name}: {value!r}",
                config_key=name,
                expected_type="int",
            )
    if isinstance(current, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Cannot parse number for {name}: {value!r}",
                config_key=name,
                expected_type="float",
            )
    return value


def _load_secrets_toml(secrets_path: Path) -> Dict[str, Any]:
    """Read supabase credentials and [offline_sync] keys from a TOML file."""
    if not secrets_path.exists():
        return {}

    try:
        with open(secrets_path, "rb") as f:
            secrets = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Cannot read secrets file: {e}",
            config_key=str(secrets_path),
        )

    values: Dict[str, Any] = {}
    supabase = secrets.get("supabase", {})
    if supabase.get("url"):
        values["supabase_url"] = supabase["url"]
    if supabase.get("key"):
        values["supabase_key"] = supabase["key"]
    values.update(secrets.get("offline_sync", {}))
    return values


def _load_environment(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if env.get("SUPABASE_URL"):
        values["supabase_url"] = env["SUPABASE_URL"]
    if env.get("SUPABASE_KEY"):
        values["supabase_key"] = env["SUPABASE_KEY"]
    for f in fields(SyncSettings):
        key = ENV_PREFIX + f.name.upper()
        if key in env:
            values[f.name] = env[key]
    return values


def load_settings(
    secrets_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> SyncSettings:
    """
    Build validated settings from defaults, secrets.toml, environment and overrides.

    Args:
        secrets_path: TOML file to read (default: .streamlit/secrets.toml)
        env: Environment mapping (default: os.environ)
        **overrides: Field values that win over every other source

    Returns:
        Validated SyncSettings
    """
    settings = SyncSettings()
    known = {f.name for f in fields(SyncSettings)}

    layers = [
        ("secrets", _load_secrets_toml(Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH)),
        ("environment", _load_environment(os.environ if env is None else env)),
        ("overrides", overrides),
    ]

    for source, values in layers:
        changes = {}
        for name, raw in values.items():
            if name not in known:
                logger.warning(f"Ignoring unknown setting '{name}' from {source}")
                continue
            changes[name] = _coerce(name, raw, getattr(settings, name))
        if changes:
            settings = replace(settings, **changes)
            logger.debug(f"Applied {len(changes)} setting(s) from {source}")

    return settings.validate()

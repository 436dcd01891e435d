"""Unified configuration schema for workout_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote store, sync behaviour and logging.  Includes an
adapter that flattens the sections into the fallback dict consumed by
``config.load_config()``.

Usage:
    from workout_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=unified.to_fallbacks())
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote document store connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(
        default=None, description="Remote document store base URL"
    )
    token: str | None = Field(default=None, description="Bearer token")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    timeout_seconds: int = Field(
        default=60,
        ge=1,
        le=600,
        description="HTTP read timeout in seconds (1-600)",
    )
    batch_size: int = Field(
        default=500,
        ge=1,
        le=500,
        description="Documents per upload request (1-500)",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine settings.

    Attributes:
        owner_id: Signed-in owner id used by ``sync`` and ``restore``.
        cooldown_minutes: Minimum minutes between full syncs (0 = off).
        state_dir: Directory for baselines and the installation id.
        database_path: Local SQLite database (default: in ``state_dir``).
    """

    owner_id: str | None = Field(default=None, description="Owner id")
    cooldown_minutes: int = Field(
        default=0, ge=0, description="Minutes between full syncs"
    )
    state_dir: str | None = Field(
        default=None, description="State directory"
    )
    database_path: str | None = Field(
        default=None, description="Local SQLite database path"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json`` for stderr output.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    def to_fallbacks(self) -> dict:
        """Flatten into the ``yaml_fallbacks`` dict of ``load_config()``.

        Unset values are omitted so they never shadow built-in defaults.
        """
        values = {
            "url": self.remote.url,
            "token": self.remote.token,
            "insecure": self.remote.insecure,
            "timeout_seconds": self.remote.timeout_seconds,
            "batch_size": self.remote.batch_size,
            "owner_id": self.sync.owner_id,
            "cooldown_minutes": self.sync.cooldown_minutes,
            "state_dir": self.sync.state_dir,
            "database_path": self.sync.database_path,
            "debug": self.sync.debug,
        }
        return {k: v for k, v in values.items() if v is not None}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)

"""Runtime configuration for the workout-sync CLI.

Reads remote store and sync settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    WORKOUT_SYNC_URL: Remote document store base URL (required for sync)
    WORKOUT_SYNC_TOKEN: Bearer token for the remote store (required for sync)
    WORKOUT_SYNC_OWNER: Signed-in owner id (optional)
    WORKOUT_SYNC_INSECURE: Skip SSL verification (optional, default: false)
    WORKOUT_SYNC_DEBUG: Enable debug logging (optional, default: false)
    WORKOUT_SYNC_TIMEOUT: HTTP read timeout in seconds (optional, default: 60)
    WORKOUT_SYNC_BATCH_SIZE: Documents per upload request (optional, default: 500)
    WORKOUT_SYNC_COOLDOWN: Minutes between full syncs (optional, default: 0)
    WORKOUT_SYNC_STATE_DIR: Baseline/installation state directory (optional)
    WORKOUT_SYNC_DATABASE: Local SQLite database path (optional)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.local/state/workout_sync"
DATABASE_FILENAME = "workouts.db"


@dataclass
class Config:
    remote_url: str
    api_token: str
    owner_id: str | None = None
    insecure: bool = False
    debug: bool = False
    timeout_seconds: int = 60
    batch_size: int = 500
    cooldown_minutes: int = 0
    state_dir: str = DEFAULT_STATE_DIR
    database_path: str | None = None

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir).expanduser()

    @property
    def resolved_database_path(self) -> str:
        """Database path, defaulting to ``workouts.db`` in the state dir."""
        if self.database_path:
            if self.database_path == ":memory:":
                return self.database_path
            return str(Path(self.database_path).expanduser())
        return str(self.state_path / DATABASE_FILENAME)


def validate_config(config: Config, require_remote: bool = True) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.
        require_remote: Whether the remote URL and token must be set.

    Raises:
        ValueError: If URL format is invalid, the token is empty, or a
            numeric setting is out of range.
    """
    # Normalize URL: strip whitespace
    config.remote_url = config.remote_url.strip()

    if config.remote_url or require_remote:
        if not config.remote_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': must start with http:// or https://"
            )

        parsed = urlparse(config.remote_url)
        if not parsed.hostname:
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': URL must include a hostname"
            )

        # Strip trailing slash after validation (safe now that scheme/host are verified)
        config.remote_url = config.remote_url.removesuffix("/")

    if require_remote and not config.api_token.strip():
        raise ValueError(
            "API token cannot be empty. Set WORKOUT_SYNC_TOKEN environment variable."
        )

    if not (1 <= config.batch_size <= 500):
        raise ValueError(
            f"Invalid batch size {config.batch_size}: must be between 1 and 500"
        )

    if config.timeout_seconds <= 0:
        raise ValueError(
            f"Invalid timeout {config.timeout_seconds}: must be positive"
        )

    if config.cooldown_minutes < 0:
        raise ValueError(
            f"Invalid cooldown {config.cooldown_minutes}: must not be negative"
        )

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int(
    cli_value: int | None,
    env_key: str,
    fb: dict,
    fb_key: str,
    default: int,
) -> int:
    """Resolve an integer setting: CLI > env > YAML > default."""
    if cli_value is not None:
        return cli_value
    raw = os.getenv(env_key)
    if raw is not None:
        try:
            return int(raw)
        except ValueError:
            raise ValueError(
                f"Invalid {env_key} '{raw}': must be a whole number"
            ) from None
    if fb.get(fb_key) is not None:
        return int(fb[fb_key])
    return default


def load_config(
    url: str | None = None,
    token: str | None = None,
    owner: str | None = None,
    insecure: bool = False,
    debug: bool = False,
    cooldown_minutes: int | None = None,
    state_dir: str | None = None,
    database_path: str | None = None,
    yaml_fallbacks: dict | None = None,
    require_remote: bool = True,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        url: Override remote URL.
        token: Override API token.
        owner: Override owner id.
        insecure: Skip SSL verification (CLI flag).
        debug: Enable debug logging (CLI flag).
        cooldown_minutes: Override the full-sync cooldown.
        state_dir: Override the state directory.
        database_path: Override the local database path.
        yaml_fallbacks: Flat dict of values from the YAML config file
            (see ``config_schema.UnifiedConfig.to_fallbacks``).
        require_remote: Whether the remote URL and token are mandatory
            (``False`` for local-only commands such as ``status``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config (URL, token) is missing after
            checking all sources, or a value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > error ---

    remote_url = url or os.getenv("WORKOUT_SYNC_URL") or fb.get("url") or ""
    if not remote_url and require_remote:
        raise ValueError(
            "Remote URL not found. Set WORKOUT_SYNC_URL environment variable, "
            "pass --url CLI argument, or add 'remote.url' to config.yml."
        )

    api_token = token or os.getenv("WORKOUT_SYNC_TOKEN") or fb.get("token") or ""
    if not api_token and require_remote:
        raise ValueError(
            "API token not found. Set WORKOUT_SYNC_TOKEN environment variable, "
            "pass --token CLI argument, or add 'remote.token' to config.yml."
        )

    owner_id = owner or os.getenv("WORKOUT_SYNC_OWNER") or fb.get("owner_id")

    final_state_dir = (
        state_dir
        or os.getenv("WORKOUT_SYNC_STATE_DIR")
        or fb.get("state_dir")
        or DEFAULT_STATE_DIR
    )
    final_database = (
        database_path
        or os.getenv("WORKOUT_SYNC_DATABASE")
        or fb.get("database_path")
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if insecure:
        final_insecure = True
    else:
        env_insecure = _get_bool_env("WORKOUT_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("WORKOUT_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # --- Numeric fields ---

    config = Config(
        remote_url=remote_url.strip(),
        api_token=api_token.strip(),
        owner_id=owner_id.strip() if owner_id else None,
        insecure=final_insecure,
        debug=final_debug,
        timeout_seconds=_get_int(
            None, "WORKOUT_SYNC_TIMEOUT", fb, "timeout_seconds", 60
        ),
        batch_size=_get_int(
            None, "WORKOUT_SYNC_BATCH_SIZE", fb, "batch_size", 500
        ),
        cooldown_minutes=_get_int(
            cooldown_minutes, "WORKOUT_SYNC_COOLDOWN", fb, "cooldown_minutes", 0
        ),
        state_dir=final_state_dir,
        database_path=final_database,
    )

    validate_config(config, require_remote=require_remote)

    return config

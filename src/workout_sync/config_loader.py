"""YAML config files for workout-sync.

A device can carry two config files: a per-checkout one under
``.workout_sync/`` and a per-user one under ``~/.config/workout_sync/``.
``WORKOUT_SYNC_CONFIG`` names a third that outranks both.  Sections from a
higher-ranked file replace the same sections from lower-ranked ones
wholesale, so a project file that sets ``remote:`` does not inherit the
user file's ``remote.token``.

String values may reference the environment (``${WORKOUT_SYNC_TOKEN}``,
``${SYNC_HOST:-localhost}``) and files may pull in fragments with
``!include secrets.yml``.  The merged mapping feeds
``config_schema.build_config()``.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WORKOUT_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".workout_sync"
CONFIG_FILENAME = "config.yml"

_ENV_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def project_config_path() -> Path:
    return Path.cwd() / PROJECT_CONFIG_DIR / CONFIG_FILENAME


def user_config_path() -> Path:
    return Path.home() / ".config" / "workout_sync" / CONFIG_FILENAME


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    there is none.  An unterminated ``${`` is kept as written.
    """
    return _ENV_REF.sub(
        lambda m: os.environ.get(m.group(1)) or m.group(2) or "", value
    )


def _interpolate_recursive(obj: Any) -> Any:
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {key: _interpolate_recursive(val) for key, val in obj.items()}
        case list():
            return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """Safe loader that also understands ``!include``."""


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    including_file = Path(loader.name).resolve()
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = including_file.parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        loop = " -> ".join(map(str, [*chain, target]))
        raise ValueError(f"Circular include detected: {loop}")
    if not target.exists():
        raise FileNotFoundError(
            f"{including_file} includes {target}, which does not exist"
        )
    return _load_yaml_with_includes(target, _include_stack=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery and merge
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest rank first.

    Ranking: ``$WORKOUT_SYNC_CONFIG``, then the project file, then the user
    file.  Missing files are left out.
    """
    candidates = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    candidates += [project_config_path(), user_config_path()]
    return [path for path in candidates if path.exists()]


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered file into one mapping of sections.

    Returns ``{}`` when there is nothing to load; the defaults in
    ``config_schema`` then apply.  Environment references are expanded
    after merging so a project file can override the raw reference.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found")
        return {}

    sections: dict[str, Any] = {}
    for path in reversed(paths):
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Could not read config file %s", path)
            raise
        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: expected a mapping at the top level, got %s",
                path,
                type(data).__name__,
            )
            continue
        logger.debug("Loaded config sections %s from %s", sorted(data), path)
        sections.update(data)

    return _interpolate_recursive(sections)


# ---------------------------------------------------------------------------
# workout-sync init
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# workout-sync configuration
#
# Connection settings can also be set via environment variables:
#   WORKOUT_SYNC_URL, WORKOUT_SYNC_TOKEN, WORKOUT_SYNC_OWNER
#
# remote:
#   url: https://sync.example.com/api
#   token: ${WORKOUT_SYNC_TOKEN}
#   insecure: false
#   timeout_seconds: 60
#   batch_size: 500
#
# sync:
#   owner_id: user-123
#   cooldown_minutes: 5
#   state_dir: ~/.local/state/workout_sync
#   database_path: null
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """The file ``init`` would edit: the top-ranked existing one, else the
    project path."""
    existing = discover_config_files()
    return existing[0] if existing else project_config_path()


def ensure_config(target: Path | None = None) -> Path:
    """Write a commented-out starter config unless one already exists.

    Args:
        target: Where to write the starter file; defaults to
            ``resolve_config_path()``.

    Returns:
        The existing top-ranked config file, or the newly written one.
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Keeping existing config %s", existing[0])
        return existing[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config %s", path)
    return path

"""Sync state persistence layer.

Manages the engine-owned state kept in the state directory
(``~/.local/state/workout_sync/`` by default):

* ``baselines.json`` -- last successful sync timestamps keyed by
  ``(owner, installation, scope)``.  Multiple devices for one owner keep
  independent incremental baselines.
* ``installation_id`` -- a random UUID generated on first run that
  identifies this installation.

Key design choices:

* **Atomic writes** -- saves write to a temp file then call
  ``os.replace()`` so readers never see partial data.
* **Injected store** -- the coordinator talks to a ``BaselineStore``;
  ``InMemoryBaselineStore`` serves tests and one-shot runs.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

BASELINE_FILE = "baselines.json"
INSTALLATION_ID_FILE = "installation_id"


def _atomic_write(target: Path, text: str) -> None:
    """Write *text* to *target* via a temp file in the same directory."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_path, target)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class InMemoryBaselineStore:
    """Baseline store that lives for the lifetime of the process."""

    def __init__(self) -> None:
        self._baselines: dict[tuple[str, str, str], datetime] = {}
        self._lock = threading.Lock()

    def get_last_sync_time(
        self, owner_id: str, installation_id: str, scope: str
    ) -> datetime | None:
        with self._lock:
            return self._baselines.get((owner_id, installation_id, scope))

    def set_last_sync_time(
        self,
        owner_id: str,
        installation_id: str,
        scope: str,
        timestamp: datetime,
    ) -> None:
        with self._lock:
            self._baselines[(owner_id, installation_id, scope)] = timestamp


class JsonBaselineStore:
    """Load, save, and query baselines in a JSON file.

    Args:
        state_dir: Directory holding ``baselines.json``.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._state_dir / BASELINE_FILE

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """Load state from disk.

        Returns:
            The state dict.  If the file does not exist an empty state
            with ``version=1`` is returned.
        """
        if not self.path.exists():
            return {"version": 1, "baselines": {}}
        with open(self.path, encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, state: dict) -> None:
        """Persist *state* atomically, creating ``state_dir`` if needed."""
        _atomic_write(self.path, json.dumps(state, indent=2))

    # ------------------------------------------------------------------
    # BaselineStore
    # ------------------------------------------------------------------

    def get_last_sync_time(
        self, owner_id: str, installation_id: str, scope: str
    ) -> datetime | None:
        with self._lock:
            state = self.load()
        value = (
            state.get("baselines", {})
            .get(owner_id, {})
            .get(installation_id, {})
            .get(scope)
        )
        if value is None:
            return None
        return datetime.fromisoformat(value)

    def set_last_sync_time(
        self,
        owner_id: str,
        installation_id: str,
        scope: str,
        timestamp: datetime,
    ) -> None:
        with self._lock:
            state = self.load()
            state.setdefault("baselines", {}).setdefault(
                owner_id, {}
            ).setdefault(installation_id, {})[scope] = timestamp.isoformat()
            self.save(state)
        logger.debug(
            "Baseline %s/%s/%s -> %s",
            owner_id,
            installation_id,
            scope,
            timestamp.isoformat(),
        )


def load_or_create_installation_id(state_dir: Path) -> str:
    """Return this installation's id, generating it on first use.

    Args:
        state_dir: Directory holding the ``installation_id`` file.
    """
    path = Path(state_dir) / INSTALLATION_ID_FILE
    if path.exists():
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return existing
    installation_id = str(uuid.uuid4())
    _atomic_write(path, installation_id + "\n")
    logger.info("Generated installation id %s", installation_id)
    return installation_id

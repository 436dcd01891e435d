"""Bidirectional converters between local entities and remote documents.

Remote documents use camelCase keys, carry the local primary key twice
(``id`` and ``localId``) and may include server-managed fields such as
``lastModified``.  Local entities are snake_case pydantic models.

Conversion is total: a document with missing keys converts using the
entity defaults, unknown keys are ignored, and a value that fails
validation (an unknown enum member, a malformed timestamp) is replaced by
the field default and logged rather than raised.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any

from pydantic import ValidationError

from .entities import SyncEntity

logger = logging.getLogger(__name__)

# Server-managed keys that never map onto a local field.
SERVER_FIELDS = frozenset({"lastModified"})

_CAMEL_BOUNDARY = re.compile(r"_([a-z0-9])")
_SNAKE_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_camel(name: str) -> str:
    """``personal_notes`` -> ``personalNotes``; ``estimated_1rm`` -> ``estimated1rm``."""
    return _CAMEL_BOUNDARY.sub(lambda m: m.group(1).upper(), name)


def to_snake(name: str) -> str:
    """``personalNotes`` -> ``personal_notes``."""
    return _SNAKE_BOUNDARY.sub(lambda m: "_" + m.group(1).lower(), name)


def _rekey(value: Any, keyfn) -> Any:
    if isinstance(value, dict):
        return {keyfn(k): _rekey(v, keyfn) for k, v in value.items()}
    if isinstance(value, list):
        return [_rekey(v, keyfn) for v in value]
    return value


class DocumentConverter:
    """Converter pair for one entity type.

    Args:
        entity_type: The local pydantic model this converter produces.
    """

    def __init__(self, entity_type: type[SyncEntity]) -> None:
        self.entity_type = entity_type
        fields = entity_type.model_fields
        # Remote key -> local field name, built from the model itself so
        # that names like ``estimated_1rm`` round-trip exactly.
        self._from_remote_keys = {to_camel(name): name for name in fields}

    # ------------------------------------------------------------------
    # Local -> remote
    # ------------------------------------------------------------------

    def to_remote(self, record: SyncEntity) -> dict[str, Any]:
        """Serialize *record* into a remote document."""
        data = record.model_dump(mode="json")
        document = {to_camel(k): _rekey(v, to_camel) for k, v in data.items()}
        document["localId"] = record.id
        return document

    # ------------------------------------------------------------------
    # Remote -> local
    # ------------------------------------------------------------------

    def from_remote(self, document: dict[str, Any]) -> SyncEntity:
        """Build a local entity from *document*.  Never raises on bad data."""
        data: dict[str, Any] = {}
        for key, value in document.items():
            if key in SERVER_FIELDS or key in ("id", "localId"):
                continue
            field = self._from_remote_keys.get(key)
            if field is None:
                continue
            data[field] = _rekey(value, to_snake)

        data["id"] = str(document.get("localId") or document.get("id") or "")
        if not data.get("user_id"):
            data["user_id"] = None

        try:
            return self.entity_type.model_validate(data)
        except ValidationError as exc:
            return self._validate_with_defaults(data, exc)

    def _validate_with_defaults(
        self, data: dict[str, Any], exc: ValidationError
    ) -> SyncEntity:
        bad_fields = {err["loc"][0] for err in exc.errors() if err["loc"]}
        for field in sorted(bad_fields, key=str):
            logger.warning(
                "%s %s: invalid %s=%r, using default",
                self.entity_type.__name__,
                data.get("id"),
                field,
                data.get(field),
            )
            data.pop(field, None)
        return self.entity_type.model_validate(data)

    def __repr__(self) -> str:
        return f"<DocumentConverter {self.entity_type.__name__}>"


@lru_cache(maxsize=None)
def get_converter(entity_type: type[SyncEntity]) -> DocumentConverter:
    """Return the shared converter for *entity_type*."""
    return DocumentConverter(entity_type)


def to_remote(record: SyncEntity) -> dict[str, Any]:
    return get_converter(type(record)).to_remote(record)


def from_remote(
    entity_type: type[SyncEntity], document: dict[str, Any]
) -> SyncEntity:
    return get_converter(entity_type).from_remote(document)

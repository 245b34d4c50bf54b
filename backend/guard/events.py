"""
Inbound "object finalized" events.

Two payload shapes are accepted:

- the plain event `{"objectPath": "...", "containerId": "..."}` (snake_case
  keys are accepted as well), and
- a Supabase database webhook fired on `storage.objects` inserts:
  `{"type": "INSERT", "schema": "storage", "table": "objects",
    "record": {"name": "...", "bucket_id": "..."}}`.

Events arrive at least once; parsing has no side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


class InvalidEventError(ValueError):
    """Raised when a payload is not a recognizable finalize event."""


@dataclass(frozen=True, slots=True)
class StorageEvent:
    object_path: str
    container_id: str

    @classmethod
    def from_payload(cls, payload: Any) -> "StorageEvent":
        if not isinstance(payload, Mapping):
            raise InvalidEventError("payload_not_object")
        record = payload.get("record")
        if isinstance(record, Mapping) and "type" in payload:
            if str(payload.get("type") or "").upper() != "INSERT":
                raise InvalidEventError("unsupported_webhook_type")
            path = record.get("name")
            container = record.get("bucket_id")
        else:
            path = payload.get("objectPath", payload.get("object_path"))
            container = payload.get("containerId", payload.get("container_id"))
        if not isinstance(path, str) or not path.strip():
            raise InvalidEventError("missing_object_path")
        if not isinstance(container, str) or not container.strip():
            raise InvalidEventError("missing_container_id")
        return cls(object_path=path.strip(), container_id=container.strip())


__all__ = ["InvalidEventError", "StorageEvent"]

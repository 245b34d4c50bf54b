"""
In-memory record store for development and tests.

Mirrors the Postgres store's semantics: timestamps come from the store's own
clock (never from callers), uploads list oldest-first, restriction flags are
created on first write and merged afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from .ports import RecordStoreProtocol, UploadRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Restriction:
    restricted: bool
    updated_at: datetime


class InMemoryRecordStore(RecordStoreProtocol):
    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utcnow
        self._lock = Lock()
        self._last_ts: Optional[datetime] = None
        self.uploads: Dict[str, UploadRecord] = {}
        self.markers: Dict[str, List[datetime]] = {}
        self.restrictions: Dict[str, _Restriction] = {}

    def _now(self) -> datetime:
        # Keep assigned timestamps strictly increasing, like a server sequence.
        ts = self._clock()
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        self._last_ts = ts
        return ts

    # --- Uploads ---------------------------------------------------------------

    def add_upload(self, owner_id: str, object_ref: Optional[str]) -> UploadRecord:
        with self._lock:
            record = UploadRecord(id=str(uuid4()), owner_id=owner_id, object_ref=object_ref, created_at=self._now())
            self.uploads[record.id] = record
            return record

    def list_uploads_oldest_first(self, owner_id: str) -> List[UploadRecord]:
        with self._lock:
            items = [r for r in self.uploads.values() if r.owner_id == owner_id]
        return sorted(items, key=lambda r: r.created_at)

    def delete_upload(self, upload_id: str) -> None:
        with self._lock:
            self.uploads.pop(upload_id, None)

    # --- Attempt markers -------------------------------------------------------

    def append_marker(self, owner_id: str) -> datetime:
        with self._lock:
            ts = self._now()
            self.markers.setdefault(owner_id, []).append(ts)
            return ts

    def count_markers_since(self, owner_id: str, after: datetime) -> int:
        with self._lock:
            return sum(1 for ts in self.markers.get(owner_id, []) if ts > after)

    def delete_markers_before(self, owner_id: str, before: datetime) -> int:
        with self._lock:
            current = self.markers.get(owner_id, [])
            kept = [ts for ts in current if ts >= before]
            self.markers[owner_id] = kept
            return len(current) - len(kept)

    # --- Restrictions ----------------------------------------------------------

    def get_restriction(self, owner_id: str) -> Optional[bool]:
        with self._lock:
            entry = self.restrictions.get(owner_id)
            return entry.restricted if entry else None

    def set_restriction(self, owner_id: str, restricted: bool) -> datetime:
        with self._lock:
            ts = self._now()
            entry = self.restrictions.get(owner_id)
            if entry is None:
                self.restrictions[owner_id] = _Restriction(restricted=restricted, updated_at=ts)
            else:
                entry.restricted = restricted
                entry.updated_at = ts
            return ts


__all__ = ["InMemoryRecordStore"]

"""Record store contract shared by the quota and rate-limit handlers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol


@dataclass(frozen=True, slots=True)
class UploadRecord:
    """One retained swatch upload.

    `created_at` is assigned by the record store at write time, never by the
    uploading client, so eviction order cannot be gamed with clock skew.
    """

    id: str
    owner_id: str
    object_ref: Optional[str]
    created_at: datetime


class RecordStoreProtocol(Protocol):
    """Durable per-owner state: upload records, attempt markers, restrictions."""

    def add_upload(self, owner_id: str, object_ref: Optional[str]) -> UploadRecord:
        """Record one finished upload; the store assigns `id` and `created_at`.

        Called by the upload flow (or a backfill) after the object is stored;
        the guard handlers only read and delete records.
        """
        ...

    def list_uploads_oldest_first(self, owner_id: str) -> List[UploadRecord]: ...

    def delete_upload(self, upload_id: str) -> None: ...

    def append_marker(self, owner_id: str) -> datetime:
        """Record one upload attempt and return its server-assigned timestamp."""
        ...

    def count_markers_since(self, owner_id: str, after: datetime) -> int: ...

    def delete_markers_before(self, owner_id: str, before: datetime) -> int: ...

    def get_restriction(self, owner_id: str) -> Optional[bool]:
        """Return the restriction flag, or None when it was never set."""
        ...

    def set_restriction(self, owner_id: str, restricted: bool) -> datetime:
        """Create-or-merge the owner's flag and return the server timestamp."""
        ...


__all__ = ["UploadRecord", "RecordStoreProtocol"]

"""
Object store ports used by the quota and rate-limit handlers.

Keep these small and framework-agnostic so tests can supply simple fakes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol


class ObjectNotFoundError(LookupError):
    """Raised when an object path does not resolve to a stored object."""

    def __init__(self, path: str):
        super().__init__(f"object_not_found: {path}")
        self.path = path


@dataclass(frozen=True, slots=True)
class StoredObject:
    """One listed object. `size_bytes` is None when the store reports no size."""

    path: str
    size_bytes: Optional[int] = None


class ObjectStoreProtocol(Protocol):
    """Minimal interface to list, size and delete binary objects in a bucket.

    Intent:
        Let the handlers account for and evict stored swatches without
        depending on a specific cloud SDK.

    Permissions:
        Implementations run with server-side credentials; callers only pass
        bucket-relative paths.
    """

    def list_objects(self, *, bucket: str, prefix: str) -> List[StoredObject]: ...

    def object_size(self, *, bucket: str, path: str) -> Optional[int]: ...

    def delete_object(self, *, bucket: str, path: str) -> None: ...


class NullObjectStore:
    """Fallback store that signals the storage backend is not configured."""

    def list_objects(self, *, bucket: str, prefix: str) -> List[StoredObject]:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def object_size(self, *, bucket: str, path: str) -> Optional[int]:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")

    def delete_object(self, *, bucket: str, path: str) -> None:  # noqa: D401
        raise RuntimeError("storage_adapter_not_configured")


__all__ = ["ObjectNotFoundError", "StoredObject", "ObjectStoreProtocol", "NullObjectStore"]

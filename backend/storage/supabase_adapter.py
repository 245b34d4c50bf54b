"""
Supabase-backed object store for swatch uploads.

This adapter implements ObjectStoreProtocol using a provided Supabase client.
It is intentionally duck-typed to avoid a hard dependency during testing. The
client is expected to expose `.storage.from_(bucket)` (supabase client) or
`.from_(bucket)` (storage3 SyncStorageClient), which returns an object
offering:

- list(path, options) -> [ { name, id, metadata: { size, ... } } ]
- info(path) / stat(path) -> { size, ... }
- remove([path]) -> [ removed objects ]

Security:
- The caller must ensure the client is initialized with the Service Role key.
- Paths are always normalized relative to the bucket.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .ports import ObjectNotFoundError, ObjectStoreProtocol, StoredObject

_log = logging.getLogger("swatchbook.storage")

LIST_PAGE_SIZE = 100
# Folder recursion bound; swatch paths are at most a few levels deep.
MAX_LIST_DEPTH = 8


def _is_not_found(exc: Exception) -> bool:
    """Return True when a storage client exception reports a missing object."""
    payload = exc.args[0] if exc.args else None
    if isinstance(payload, dict):
        status = str(payload.get("statusCode") or payload.get("status") or "")
        if status == "404":
            return True
        text = " ".join(str(payload.get(k) or "") for k in ("error", "message")).lower()
    else:
        text = str(exc).lower()
    return "not found" in text or "not_found" in text


class SupabaseObjectStore(ObjectStoreProtocol):
    """Object store using a supabase client for Storage operations."""

    def __init__(self, client: Any):
        # Duck-typed supabase client, e.g., from `supabase import create_client(...)`.
        self._client = client

    # --- Helpers -----------------------------------------------------------------

    def _bucket(self, bucket: str) -> Any:
        """Return a bucket proxy from either supabase client or storage3 client."""
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(bucket)
        if hasattr(c, "from_"):
            return c.from_(bucket)  # type: ignore[attr-defined]
        raise RuntimeError("invalid_supabase_client")

    @staticmethod
    def _normalize(bucket: str, path: str) -> str:
        norm = path.lstrip("/")
        prefix = f"{bucket}/"
        if norm.startswith(prefix):
            norm = norm[len(prefix):]
        return norm

    @staticmethod
    def _size_from_metadata(entry: Dict[str, Any]) -> Optional[int]:
        meta = entry.get("metadata")
        raw = meta.get("size") if isinstance(meta, dict) else entry.get("size")
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    def _list_folder(self, proxy: Any, folder: str, depth: int, out: List[StoredObject]) -> None:
        offset = 0
        while True:
            page = proxy.list(folder, {"limit": LIST_PAGE_SIZE, "offset": offset})
            entries = page if isinstance(page, list) else []
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("name"):
                    continue
                child = f"{folder}/{entry['name']}" if folder else str(entry["name"])
                # Storage reports folders as entries without an id.
                if entry.get("id") is None:
                    if depth < MAX_LIST_DEPTH:
                        self._list_folder(proxy, child, depth + 1, out)
                    continue
                out.append(StoredObject(path=child, size_bytes=self._size_from_metadata(entry)))
            if len(entries) < LIST_PAGE_SIZE:
                return
            offset += LIST_PAGE_SIZE

    # --- Protocol methods --------------------------------------------------------

    def list_objects(self, *, bucket: str, prefix: str) -> List[StoredObject]:
        proxy = self._bucket(bucket)
        folder = self._normalize(bucket, prefix).rstrip("/")
        out: List[StoredObject] = []
        self._list_folder(proxy, folder, 0, out)
        return out

    def object_size(self, *, bucket: str, path: str) -> Optional[int]:
        proxy = self._bucket(bucket)
        norm_key = self._normalize(bucket, path)
        # Newer storage3 exposes `info`; older clients only `stat`.
        lookup = getattr(proxy, "info", None) or getattr(proxy, "stat", None)
        if lookup is None:
            raise RuntimeError("object_size_unsupported")
        try:
            info = lookup(norm_key)
        except Exception as exc:
            if _is_not_found(exc):
                raise ObjectNotFoundError(norm_key) from exc
            raise
        if not isinstance(info, dict):
            return None
        # supabase-py variants report either top-level or nested `data`
        data = info.get("data") if isinstance(info.get("data"), dict) else info
        return self._size_from_metadata(data)

    def delete_object(self, *, bucket: str, path: str) -> None:
        proxy = self._bucket(bucket)
        # Supabase Storage remove expects paths relative to the bucket
        norm_key = self._normalize(bucket, path)
        try:
            removed = proxy.remove([norm_key])
        except Exception as exc:
            if _is_not_found(exc):
                raise ObjectNotFoundError(norm_key) from exc
            raise
        # remove() succeeds with an empty list when nothing matched the path.
        if isinstance(removed, list) and not removed:
            raise ObjectNotFoundError(norm_key)
        _log.debug("removed object bucket=%s path=%s", bucket, norm_key)


__all__ = ["SupabaseObjectStore", "LIST_PAGE_SIZE"]

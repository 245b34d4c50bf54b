"""
Wiring helpers for the object store and record store.

Why:
    The service may start before Supabase or Postgres is reachable locally.
    These helpers build the adapters from env and fall back to inert or
    in-memory implementations so the app can boot; the webhook then fails
    loudly (500) until real stores are configured.

Security:
    Requires SUPABASE_SERVICE_ROLE_KEY and SUPABASE_URL environment variables.
    The helpers only wire server-side adapters; no secrets are exposed to clients.
"""
from __future__ import annotations

import logging
import os
from urllib.parse import urlparse

from backend.records.ports import RecordStoreProtocol
from backend.records.repo_memory import InMemoryRecordStore
from backend.storage.ports import NullObjectStore, ObjectStoreProtocol
from backend.storage.supabase_adapter import SupabaseObjectStore

logger = logging.getLogger("swatchbook.web")


def _is_local(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return host in {"127.0.0.1", "localhost"}


def build_object_store() -> ObjectStoreProtocol:
    """Build the Supabase object store, or a NullObjectStore when unconfigured.

    Behavior:
        - Prefers the official supabase client.
        - Falls back to a storage3 client for local `supabase start` setups
          whose keys are not JWTs (or when SUPABASE_FALLBACK_STORAGE3=true).
        - Creates the swatch bucket when AUTO_CREATE_STORAGE_BUCKETS=true.
    """
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        logger.warning("Object store not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY missing)")
        return NullObjectStore()

    store: ObjectStoreProtocol | None = None
    try:
        from supabase import create_client

        store = SupabaseObjectStore(create_client(url, key))
    except Exception as exc:
        logger.warning("Supabase client unavailable: %s: %s", exc.__class__.__name__, str(exc))

    if store is None:
        force = (os.getenv("SUPABASE_FALLBACK_STORAGE3", "false").lower() == "true")
        if not force and not _is_local(url):
            return NullObjectStore()
        from storage3._sync.client import SyncStorageClient

        headers = {"Authorization": f"Bearer {key}", "apikey": key}
        store = SupabaseObjectStore(SyncStorageClient(f"{url.rstrip('/')}/storage/v1", headers))
        logger.info("Object store wired: storage3 fallback")
    else:
        logger.info("Object store wired: Supabase")

    from backend.storage.bootstrap import ensure_bucket_from_env

    ensure_bucket_from_env()
    return store


def build_record_store() -> RecordStoreProtocol:
    """Build the Postgres record store unless SWATCH_RECORD_STORE=memory."""
    backend = (os.getenv("SWATCH_RECORD_STORE") or "db").strip().lower()
    if backend == "memory":
        logger.warning("Using in-memory record store (development only)")
        return InMemoryRecordStore()
    from backend.records.repo_db import DBRecordStore

    return DBRecordStore()


__all__ = ["build_object_store", "build_record_store"]

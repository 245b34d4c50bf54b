"""
Supabase Storage bootstrap helpers.

Intent:
    Ensure the swatch bucket exists on startup (dev/stage friendly).

Security & Safety:
    - Controlled by `AUTO_CREATE_STORAGE_BUCKETS=true` env flag.
    - Requires server-side `SUPABASE_SERVICE_ROLE_KEY`.
    - Idempotent: lists buckets first, creates only missing ones.

Usage:
    Call `ensure_bucket_from_env()` after wiring the object store.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable

import requests

from backend.storage.config import get_swatch_bucket

_log = logging.getLogger("swatchbook.storage")

_TIMEOUT = (3, 10)


def _env_flag(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() == "true"


def _headers(key: str) -> dict:
    return {"apikey": key, "Authorization": f"Bearer {key}"}


def _list_buckets(base_url: str, key: str) -> list[dict]:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    try:
        resp = requests.get(url, headers=_headers(key), timeout=_TIMEOUT)
        _log.debug("GET /storage/v1/bucket status=%s", resp.status_code)
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        _log.warning("list buckets failed: error=%s", type(exc).__name__)
        return []
    return data if isinstance(data, list) else []


def _create_bucket(base_url: str, key: str, name: str, public: bool = False) -> bool:
    url = f"{base_url.rstrip('/')}/storage/v1/bucket"
    headers = {**_headers(key), "Content-Type": "application/json"}
    try:
        resp = requests.post(url, headers=headers, json={"name": name, "public": public}, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        _log.warning("create bucket '%s' failed: error=%s", name, type(exc).__name__)
        return False
    if resp.status_code >= 300:
        # 409 conflict / 403 forbidden / 503 unavailable
        _log.warning("create bucket '%s' failed: status=%s body=%s", name, resp.status_code, resp.text)
        return False
    _log.debug("POST /storage/v1/bucket status=%s created='%s'", resp.status_code, name)
    return True


def ensure_buckets(base_url: str, key: str, buckets: Iterable[str]) -> list[str]:
    """Ensure each bucket in `buckets` exists; create if missing.

    Parameters:
        base_url: Supabase API base (e.g., http://127.0.0.1:54321)
        key: Service role JWT for server-side administration
        buckets: Iterable of bucket names to ensure exist (private by default)

    Returns:
        The bucket names that were created by this call.
    """
    existing = {str(it.get("name") or it.get("id") or "") for it in _list_buckets(base_url, key)}
    created: list[str] = []
    for name in sorted(set(buckets)):
        if not name or name in existing:
            continue
        if _create_bucket(base_url, key, name, public=False):
            created.append(name)
    return created


def ensure_bucket_from_env() -> bool:
    """Create the swatch bucket when AUTO_CREATE_STORAGE_BUCKETS=true.

    Env:
        - AUTO_CREATE_STORAGE_BUCKETS=true (opt-in safety)
        - SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY (server-side credentials)
        - SWATCH_STORAGE_BUCKET (default: swatches)

    Returns:
        False when disabled or mandatory env is missing, True otherwise.
    """
    if not _env_flag("AUTO_CREATE_STORAGE_BUCKETS"):
        return False
    _log.warning(
        "AUTO_CREATE_STORAGE_BUCKETS=true detected (dev/test convenience only). Disable this flag in prod/stage environments."
    )
    base = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not base or not key:
        return False
    ensure_buckets(base, key, [get_swatch_bucket()])
    return True


__all__ = ["ensure_bucket_from_env", "ensure_buckets"]

"""
Postgres-backed record store for swatch uploads, attempt markers and
per-owner restriction flags.

Security:
- Access with a service DSN owned by the storage guard; the tables are not
  exposed to end users (see supabase/migrations).

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Every timestamp is assigned by Postgres (`now()` / `clock_timestamp()`),
  never by the caller.
"""
from __future__ import annotations

from typing import List, Optional
import logging
import os
from datetime import datetime

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .ports import RecordStoreProtocol, UploadRecord

_log = logging.getLogger("swatchbook.records")


def _default_dev_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    return f"postgresql://postgres:postgres@{host}:{port}/postgres"


def _dsn() -> str:
    """Resolve the DSN for the record store.

    Order of precedence (first non-empty wins):
      1) SWATCH_DATABASE_URL (context-specific override)
      2) DATABASE_URL (app-wide default)
      3) Local Supabase DSN, only outside prod
    """
    env = (os.getenv("SWATCH_ENV", "dev") or "dev").lower()
    candidates = [os.getenv("SWATCH_DATABASE_URL"), os.getenv("DATABASE_URL")]
    if env != "prod":
        candidates.append(_default_dev_dsn())
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBRecordStore")


class DBRecordStore(RecordStoreProtocol):
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize the store; connections are opened per call."""
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBRecordStore")
        self._dsn = dsn or _dsn()

    # --- Uploads ----------------------------------------------------------------

    def add_upload(self, owner_id: str, object_ref: Optional[str]) -> UploadRecord:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.fabric_uploads (owner_id, object_ref)
                    values (%s, %s)
                    returning id::text, owner_id, object_ref, created_at
                    """,
                    (owner_id, object_ref),
                )
                row = cur.fetchone()
                conn.commit()
        return UploadRecord(id=row[0], owner_id=row[1], object_ref=row[2], created_at=row[3])

    def list_uploads_oldest_first(self, owner_id: str) -> List[UploadRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select id::text, owner_id, object_ref, created_at
                      from public.fabric_uploads
                     where owner_id = %s
                     order by created_at asc, id asc
                    """,
                    (owner_id,),
                )
                rows = cur.fetchall() or []
        return [UploadRecord(id=r[0], owner_id=r[1], object_ref=r[2], created_at=r[3]) for r in rows]

    def delete_upload(self, upload_id: str) -> None:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("delete from public.fabric_uploads where id = %s::uuid", (upload_id,))
                _log.debug("deleted upload %s rowcount=%s", upload_id, cur.rowcount)
                conn.commit()

    # --- Attempt markers ----------------------------------------------------------

    def append_marker(self, owner_id: str) -> datetime:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.fabric_upload_attempts (owner_id, attempted_at)
                    values (%s, clock_timestamp())
                    returning attempted_at
                    """,
                    (owner_id,),
                )
                row = cur.fetchone()
                conn.commit()
        return row[0]

    def count_markers_since(self, owner_id: str, after: datetime) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    select count(*)
                      from public.fabric_upload_attempts
                     where owner_id = %s and attempted_at > %s
                    """,
                    (owner_id, after),
                )
                row = cur.fetchone()
        return int(row[0]) if row else 0

    def delete_markers_before(self, owner_id: str, before: datetime) -> int:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "delete from public.fabric_upload_attempts where owner_id = %s and attempted_at < %s",
                    (owner_id, before),
                )
                deleted = cur.rowcount
                conn.commit()
        return int(deleted or 0)

    # --- Restrictions -------------------------------------------------------------

    def get_restriction(self, owner_id: str) -> Optional[bool]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select restricted from public.fabric_user_restrictions where owner_id = %s",
                    (owner_id,),
                )
                row = cur.fetchone()
        return bool(row[0]) if row else None

    def set_restriction(self, owner_id: str, restricted: bool) -> datetime:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public.fabric_user_restrictions (owner_id, restricted, updated_at)
                    values (%s, %s, clock_timestamp())
                    on conflict (owner_id) do update
                       set restricted = excluded.restricted,
                           updated_at = excluded.updated_at
                    returning updated_at
                    """,
                    (owner_id, bool(restricted)),
                )
                row = cur.fetchone()
                conn.commit()
        return row[0]


__all__ = ["DBRecordStore", "HAVE_PSYCOPG"]

"""Storage webhook endpoint: runs the upload guard for finalized swatch objects."""

from __future__ import annotations

import asyncio
import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.guard.events import InvalidEventError, StorageEvent
from backend.guard.pipeline import GuardResult, UploadGuard
from backend.storage.config import load_guard_config
from backend.web.config import get_webhook_secret

storage_events_router = APIRouter(tags=["Storage Events"])

logger = logging.getLogger("swatchbook.web")

WEBHOOK_SECRET_HEADER = "X-Swatch-Webhook-Secret"

GUARD: Optional[UploadGuard] = None


def set_guard(guard: Optional[UploadGuard]) -> None:
    """Inject the guard used by the webhook (tests, alternative wiring)."""
    global GUARD
    GUARD = guard


def get_guard() -> UploadGuard:
    """Return the configured guard, wiring stores from env on first use."""
    global GUARD
    if GUARD is None:
        from backend.web.storage_wiring import build_object_store, build_record_store

        GUARD = UploadGuard(build_object_store(), build_record_store(), load_guard_config())
    return GUARD


def _private_response(body: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _authorized(request: Request) -> bool:
    expected = get_webhook_secret()
    if not expected:
        # Dev only; prod startup refuses to run without a secret.
        return True
    provided = request.headers.get(WEBHOOK_SECRET_HEADER) or ""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _serialize(result: GuardResult) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "objectPath": result.event.object_path,
        "containerId": result.event.container_id,
        "ignored": result.ignored,
        "rate": None,
        "quota": None,
        "quotaFailed": result.quota_failed,
    }
    if result.rate is not None:
        body["rate"] = {
            "ownerId": result.rate.owner_id,
            "windowCount": result.rate.window_count,
            "ceiling": result.rate.ceiling,
            "rejected": result.rate.rejected,
            "restricted": result.rate.restricted,
            "objectDeleted": result.rate.object_deleted,
            "danglingRecordsRemoved": result.dangling_records_removed,
        }
    if result.quota is not None:
        body["quota"] = {
            "ownerId": result.quota.owner_id,
            "usageBytes": result.quota.usage_bytes,
            "budgetBytes": result.quota.budget_bytes,
            "freedBytes": result.quota.freed_bytes,
            "evictions": [
                {"uploadId": e.upload_id, "objectPath": e.object_path, "freedBytes": e.freed_bytes, "outcome": e.outcome}
                for e in result.quota.evictions
            ],
        }
    return body


@storage_events_router.post("/internal/storage/object-finalized")
async def object_finalized(request: Request):
    """
    Handle one "object finalized" event delivered by the storage webhook.

    Behavior:
        - 401 when the shared secret header does not match.
        - 400 for unparsable or unrecognized payloads (no retry makes sense).
        - 500 when a must-succeed admission step fails, so the sender redelivers.
          Quota failures after admission are reported as `quotaFailed: true`.
        - 200 with the admission and quota outcome otherwise; unrelated object
          paths are acknowledged with `ignored: true`.

    Permissions:
        Internal endpoint for the storage webhook only.
    """
    if not _authorized(request):
        return _private_response({"error": "unauthorized"}, status_code=401)
    try:
        payload = await request.json()
    except ValueError:
        return _private_response({"error": "invalid_json"}, status_code=400)
    try:
        event = StorageEvent.from_payload(payload)
    except InvalidEventError as exc:
        return _private_response({"error": "invalid_event", "detail": str(exc)}, status_code=400)

    guard = get_guard()
    try:
        # Store clients are blocking; keep the event loop free.
        result = await asyncio.to_thread(guard.process, event)
    except Exception as exc:
        logger.warning(
            "upload guard failed for %s: %s: %s", event.object_path, exc.__class__.__name__, str(exc)
        )
        return _private_response({"error": "guard_failed"}, status_code=500)
    return _private_response(_serialize(result), status_code=200)


__all__ = ["storage_events_router", "set_guard", "get_guard", "WEBHOOK_SECRET_HEADER"]

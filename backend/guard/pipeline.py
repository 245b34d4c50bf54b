"""
Ordered processing of one finalize event: admission first, then quota.

The two handlers stay independently usable (each is safe to run on its own,
in any order). In sequence, quota runs on every swatch event, rejected or
not, and two things change:

- When admission rejects an upload and deletes its object, any upload record
  that already points at that object is removed before quota runs, instead of
  lingering until the next eviction.
- Once admission has recorded its marker, a quota failure no longer fails the
  event. A redelivery would count the same upload twice, so the failure is
  logged, counted and reported; the next event re-lists and converges.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Optional

from backend.guard import telemetry
from backend.guard.events import StorageEvent
from backend.guard.quota import QuotaEnforcer, QuotaOutcome
from backend.guard.rate_limit import RateDecision, RateLimiter
from backend.records.ports import RecordStoreProtocol
from backend.storage.config import GuardConfig
from backend.storage.keys import MalformedReferenceError, resolve_object_ref
from backend.storage.ports import ObjectStoreProtocol

_log = logging.getLogger("swatchbook.guard")


@dataclass(frozen=True)
class GuardResult:
    event: StorageEvent
    rate: Optional[RateDecision] = None
    quota: Optional[QuotaOutcome] = None
    dangling_records_removed: int = 0
    quota_failed: bool = False

    @property
    def ignored(self) -> bool:
        return self.rate is None and self.quota is None


class UploadGuard:
    def __init__(
        self,
        objects: ObjectStoreProtocol,
        records: RecordStoreProtocol,
        config: GuardConfig,
        *,
        rng: Optional[random.Random] = None,
    ):
        self._records = records
        self.rate_limiter = RateLimiter(objects, records, config, rng=rng)
        self.quota_enforcer = QuotaEnforcer(objects, records, config)

    def process(self, event: StorageEvent) -> GuardResult:
        rate = self.rate_limiter.handle(event)
        if rate is None:
            return GuardResult(event=event)
        removed = self._drop_records_for_object(rate.owner_id, event) if rate.object_deleted else 0
        try:
            quota = self.quota_enforcer.handle(event)
        except Exception as exc:
            _log.warning(
                "quota enforcement failed for owner %s after admission: error=%s", rate.owner_id, type(exc).__name__
            )
            telemetry.increment_counter("guard_best_effort_failures_total", step="quota")
            return GuardResult(event=event, rate=rate, dangling_records_removed=removed, quota_failed=True)
        return GuardResult(event=event, rate=rate, quota=quota, dangling_records_removed=removed)

    def _drop_records_for_object(self, owner_id: str, event: StorageEvent) -> int:
        """Best-effort removal of records that point at a rejected object."""
        removed = 0
        try:
            records = self._records.list_uploads_oldest_first(owner_id)
        except Exception as exc:
            _log.warning("could not load records of owner %s: error=%s", owner_id, type(exc).__name__)
            telemetry.increment_counter("guard_best_effort_failures_total", step="dangling_record_lookup")
            return 0
        for record in records:
            try:
                path = resolve_object_ref(record.object_ref, bucket=event.container_id)
            except MalformedReferenceError:
                continue
            if path != event.object_path.lstrip("/"):
                continue
            try:
                self._records.delete_upload(record.id)
                removed += 1
            except Exception as exc:
                _log.warning("dangling record %s not deleted: error=%s", record.id, type(exc).__name__)
                telemetry.increment_counter("guard_best_effort_failures_total", step="dangling_record_delete")
        return removed


__all__ = ["GuardResult", "UploadGuard"]

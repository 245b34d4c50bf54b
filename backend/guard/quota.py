"""
Per-owner storage budget enforcement.

Intent:
    Run once per finalized swatch upload. Recompute the owner's usage from the
    authoritative object-store listing and, when it exceeds the budget, evict
    the owner's oldest uploads (object first, then record) until the usage is
    expected to be back within the budget.

Failure model:
    - Listing objects and loading records must succeed; errors propagate so
      the hosting platform can redeliver the event.
    - Every eviction step is best-effort. A record whose object cannot be
      resolved or deleted is still removed and frees nothing, so a single
      corrupt record never blocks the ones after it.
    - Re-running the handler recomputes usage from the listing, so retries
      converge instead of evicting twice.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from backend.guard import telemetry
from backend.guard.events import StorageEvent
from backend.guard.ledger import Ledger, Selection, measure_usage, select_eviction_prefix
from backend.records.ports import RecordStoreProtocol, UploadRecord
from backend.storage.config import GuardConfig
from backend.storage.keys import MalformedReferenceError, parse_owner_from_path, resolve_object_ref
from backend.storage.ports import ObjectNotFoundError, ObjectStoreProtocol

_log = logging.getLogger("swatchbook.quota")


@dataclass(frozen=True)
class _Candidate:
    record: UploadRecord
    path: Optional[str]
    size: Optional[int]
    problem: Optional[str] = None


@dataclass(frozen=True)
class EvictionResult:
    upload_id: str
    object_path: Optional[str]
    freed_bytes: int
    # "evicted" | "record_only" | "object_only" | "failed"
    outcome: str


@dataclass(frozen=True)
class QuotaOutcome:
    owner_id: str
    usage_bytes: int
    budget_bytes: int
    evictions: List[EvictionResult] = field(default_factory=list)

    @property
    def freed_bytes(self) -> int:
        return sum(e.freed_bytes for e in self.evictions)

    @property
    def over_budget(self) -> bool:
        return self.usage_bytes > self.budget_bytes


class QuotaEnforcer:
    """Evict an owner's oldest swatches once their stored bytes exceed the budget."""

    def __init__(self, objects: ObjectStoreProtocol, records: RecordStoreProtocol, config: GuardConfig):
        self._objects = objects
        self._records = records
        self._config = config
        self._ledger = Ledger(name="storage_bytes", ceiling=config.storage_budget_bytes)

    def handle(self, event: StorageEvent) -> Optional[QuotaOutcome]:
        """Enforce the budget for the owner of `event.object_path`.

        Returns None for paths outside the swatch namespace.
        """
        owner = parse_owner_from_path(event.object_path, namespace_prefix=self._config.namespace_prefix)
        if owner is None:
            _log.debug("ignoring non-swatch object path=%s", event.object_path)
            return None
        bucket = event.container_id
        prefix = self._config.owner_prefix(owner)

        listed = self._objects.list_objects(bucket=bucket, prefix=prefix)
        usage = measure_usage(listed)
        budget = self._ledger.ceiling
        if not self._ledger.is_over(usage.total):
            _log.info("usage for owner %s is %s bytes, within budget %s", owner, usage.total, budget)
            return QuotaOutcome(owner_id=owner, usage_bytes=usage.total, budget_bytes=budget)

        _log.info(
            "usage for owner %s is %s bytes, exceeds budget %s by %s; evicting oldest uploads",
            owner,
            usage.total,
            budget,
            self._ledger.excess(usage.total),
        )
        listed_sizes = {obj.path: obj.size_bytes for obj in listed}
        records = self._records.list_uploads_oldest_first(owner)
        # Generator: sizes are looked up only while the walk still needs them.
        candidates = (
            self._inspect(bucket, prefix, record, listed_sizes) for record in records if record.object_ref
        )
        selections = select_eviction_prefix(
            candidates, usage=usage.total, ceiling=budget, weigh=lambda c: c.size
        )
        results = self._evict_all(bucket, selections)
        outcome = QuotaOutcome(owner_id=owner, usage_bytes=usage.total, budget_bytes=budget, evictions=results)
        telemetry.increment_counter("quota_bytes_freed_total", amount=outcome.freed_bytes)
        _log.info(
            "freed %s bytes for owner %s across %s evictions", outcome.freed_bytes, owner, len(results)
        )
        return outcome

    # --- Selection -----------------------------------------------------------------

    def _inspect(
        self, bucket: str, prefix: str, record: UploadRecord, listed_sizes: Dict[str, Optional[int]]
    ) -> _Candidate:
        try:
            path = resolve_object_ref(record.object_ref, bucket=bucket)
        except MalformedReferenceError as exc:
            _log.warning("upload %s has a malformed object reference: %s", record.id, exc)
            return _Candidate(record=record, path=None, size=None, problem="malformed_reference")
        if not path.startswith(prefix):
            # Never touch objects outside the owner's namespace.
            _log.warning("upload %s references an object outside %s", record.id, prefix)
            return _Candidate(record=record, path=None, size=None, problem="foreign_reference")
        try:
            size = self._objects.object_size(bucket=bucket, path=path)
        except ObjectNotFoundError:
            return _Candidate(record=record, path=path, size=None, problem="missing_object")
        except Exception as exc:
            _log.warning("size lookup failed for upload %s: error=%s", record.id, type(exc).__name__)
            telemetry.increment_counter("guard_best_effort_failures_total", step="size_lookup")
            size = None
        if size is None:
            size = listed_sizes.get(path)
        return _Candidate(record=record, path=path, size=size)

    # --- Eviction ------------------------------------------------------------------

    def _evict_all(self, bucket: str, selections: List[Selection[_Candidate]]) -> List[EvictionResult]:
        if not selections:
            return []
        workers = max(1, min(self._config.eviction_workers, len(selections)))
        telemetry.adjust_gauge("guard_evictions_inflight", delta=len(selections))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="swatch-evict") as pool:
                return list(pool.map(lambda s: self._evict_one(bucket, s), selections))
        finally:
            telemetry.adjust_gauge("guard_evictions_inflight", delta=-len(selections))

    def _evict_one(self, bucket: str, selection: Selection[_Candidate]) -> EvictionResult:
        candidate = selection.item
        record = candidate.record
        object_deleted = False
        if candidate.path is not None and candidate.problem != "missing_object":
            try:
                self._objects.delete_object(bucket=bucket, path=candidate.path)
                object_deleted = True
                _log.info("deleted object %s", candidate.path)
            except ObjectNotFoundError:
                pass
            except Exception as exc:
                _log.warning("object delete failed for upload %s: error=%s", record.id, type(exc).__name__)
                telemetry.increment_counter("guard_best_effort_failures_total", step="eviction_object_delete")

        record_deleted = False
        try:
            self._records.delete_upload(record.id)
            record_deleted = True
            _log.info("deleted upload record %s", record.id)
        except Exception as exc:
            _log.warning("record delete failed for upload %s: error=%s", record.id, type(exc).__name__)
            telemetry.increment_counter("guard_best_effort_failures_total", step="eviction_record_delete")

        freed = selection.credit if object_deleted else 0
        if object_deleted and record_deleted:
            outcome = "evicted"
        elif record_deleted:
            outcome = "record_only"
        elif object_deleted:
            outcome = "object_only"
        else:
            outcome = "failed"
        telemetry.increment_counter("quota_evictions_total", outcome=outcome)
        return EvictionResult(upload_id=record.id, object_path=candidate.path, freed_bytes=freed, outcome=outcome)


__all__ = ["QuotaEnforcer", "QuotaOutcome", "EvictionResult"]

"""
Per-owner upload admission control over a sliding time window.

Intent:
    Run once per finalized swatch upload. Every attempt is recorded as a
    marker (rejected attempts included, the ceiling is measured on attempts).
    When the trailing window holds more attempts than the ceiling, the
    triggering object is deleted and the owner is flagged as restricted; the
    flag clears itself on the first later attempt that finds the window back
    at or below the ceiling.

Failure model:
    - Marker append and restriction reads/writes must succeed; errors
      propagate so the hosting platform can redeliver the event.
    - Deleting the rejected object and purging stale markers are best-effort:
      failures are logged and counted, never raised.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from backend.guard import telemetry
from backend.guard.events import StorageEvent
from backend.guard.ledger import Ledger, window_start
from backend.records.ports import RecordStoreProtocol
from backend.storage.config import GuardConfig
from backend.storage.keys import parse_owner_from_path
from backend.storage.ports import ObjectNotFoundError, ObjectStoreProtocol

_log = logging.getLogger("swatchbook.ratelimit")


@dataclass(frozen=True)
class RateDecision:
    owner_id: str
    attempted_at: datetime
    window_count: int
    ceiling: int
    rejected: bool
    restricted: bool
    object_deleted: bool = False
    purged_markers: Optional[int] = None


class RateLimiter:
    """Reject uploads beyond the per-owner attempt ceiling of the trailing window."""

    def __init__(
        self,
        objects: ObjectStoreProtocol,
        records: RecordStoreProtocol,
        config: GuardConfig,
        *,
        rng: Optional[random.Random] = None,
    ):
        self._objects = objects
        self._records = records
        self._config = config
        self._ledger = Ledger(name="upload_attempts", ceiling=config.rate_ceiling)
        self._rng = rng or random.Random()

    def handle(self, event: StorageEvent) -> Optional[RateDecision]:
        """Record the attempt behind `event` and decide on admission.

        Returns None for paths outside the swatch namespace.
        """
        owner = parse_owner_from_path(event.object_path, namespace_prefix=self._config.namespace_prefix)
        if owner is None:
            _log.debug("ignoring non-swatch object path=%s", event.object_path)
            return None

        attempted_at = self._records.append_marker(owner)
        count = self._records.count_markers_since(
            owner, window_start(attempted_at, self._config.rate_window_seconds)
        )

        if self._ledger.is_over(count):
            self._records.set_restriction(owner, True)
            _log.warning(
                "owner %s made %s upload attempts within %ss (ceiling %s); rejecting %s",
                owner,
                count,
                self._config.rate_window_seconds,
                self._ledger.ceiling,
                event.object_path,
            )
            deleted = self._delete_rejected(event)
            decision = RateDecision(
                owner_id=owner,
                attempted_at=attempted_at,
                window_count=count,
                ceiling=self._ledger.ceiling,
                rejected=True,
                restricted=True,
                object_deleted=deleted,
            )
        else:
            restricted = bool(self._records.get_restriction(owner))
            if restricted:
                self._records.set_restriction(owner, False)
                _log.info("owner %s back within %s attempts; restriction cleared", owner, self._ledger.ceiling)
            decision = RateDecision(
                owner_id=owner,
                attempted_at=attempted_at,
                window_count=count,
                ceiling=self._ledger.ceiling,
                rejected=False,
                restricted=False,
            )

        telemetry.increment_counter("rate_limit_decisions_total", decision="reject" if decision.rejected else "admit")
        purged = self._maybe_purge(owner, attempted_at)
        if purged is not None:
            decision = replace(decision, purged_markers=purged)
        return decision

    def _delete_rejected(self, event: StorageEvent) -> bool:
        try:
            self._objects.delete_object(bucket=event.container_id, path=event.object_path)
        except ObjectNotFoundError:
            return False
        except Exception as exc:
            _log.warning("rejected object delete failed path=%s error=%s", event.object_path, type(exc).__name__)
            telemetry.increment_counter("guard_best_effort_failures_total", step="rejection_delete")
            return False
        return True

    def _maybe_purge(self, owner: str, attempted_at: datetime) -> Optional[int]:
        """Drop markers past the retention horizon on a random subset of invocations."""
        if self._rng.random() >= self._config.marker_purge_probability:
            return None
        cutoff = window_start(attempted_at, self._config.marker_retention_seconds)
        try:
            purged = self._records.delete_markers_before(owner, cutoff)
        except Exception as exc:
            _log.warning("marker purge failed for owner %s: error=%s", owner, type(exc).__name__)
            telemetry.increment_counter("rate_limit_purge_total", outcome="failed")
            return None
        telemetry.increment_counter("rate_limit_purge_total", outcome="ok")
        _log.debug("purged %s stale markers for owner %s", purged, owner)
        return purged


__all__ = ["RateLimiter", "RateDecision"]

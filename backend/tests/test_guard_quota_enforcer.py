"""
Storage budget enforcement: QuotaEnforcer

Why:
    Every finalized swatch upload recomputes the owner's usage from the object
    listing and evicts the oldest uploads (object + record) just far enough to
    get back within the budget. These tests pin the eviction order, the
    minimal-eviction rule and the best-effort failure handling.
"""
from __future__ import annotations

import threading
from typing import Optional

import pytest

from backend.guard import telemetry
from backend.guard.events import StorageEvent
from backend.guard.quota import QuotaEnforcer
from backend.records.repo_memory import InMemoryRecordStore
from backend.storage.config import GuardConfig

from guard_fakes import MIB, FakeClock, FakeObjectStore

BUCKET = "swatches"


def _event(path: str) -> StorageEvent:
    return StorageEvent(object_path=path, container_id=BUCKET)


def _seed(store: FakeObjectStore, records: InMemoryRecordStore, clock: FakeClock, owner: str, sizes, *, refs=None):
    """Create one object + record per size, oldest first, one second apart."""
    created = []
    for i, size in enumerate(sizes):
        path = f"fabrics/{owner}/{i:02d}.jpg"
        store.objects[path] = size
        ref: Optional[str] = path if refs is None else refs[i]
        created.append(records.add_upload(owner, ref))
        clock.advance(1)
    return created


def test_scenario_ten_uploads_of_400_mib_evicts_exactly_three_oldest():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    created = _seed(store, records, clock, "u1", [400 * MIB] * 10)

    enforcer = QuotaEnforcer(store, records, GuardConfig())
    outcome = enforcer.handle(_event("fabrics/u1/09.jpg"))

    assert outcome is not None
    assert outcome.usage_bytes == 4000 * MIB
    assert outcome.budget_bytes == 3072 * MIB
    assert sorted(e.upload_id for e in outcome.evictions) == sorted(r.id for r in created[:3])
    assert all(e.outcome == "evicted" for e in outcome.evictions)
    assert outcome.freed_bytes == 1200 * MIB
    assert store.total("fabrics/u1/") == 2800 * MIB
    remaining = [r.id for r in records.list_uploads_oldest_first("u1")]
    assert remaining == [r.id for r in created[3:]]
    assert telemetry.counter_value("quota_evictions_total", outcome="evicted") == 3


def test_within_budget_does_not_mutate_anything():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    _seed(store, records, clock, "u1", [100, 200])

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=300)).handle(_event("fabrics/u1/01.jpg"))

    assert outcome is not None and outcome.evictions == []
    assert not outcome.over_budget
    assert store.deleted == []
    assert len(records.uploads) == 2


def test_evicts_only_the_minimal_oldest_prefix():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    created = _seed(store, records, clock, "u1", [300, 300, 500, 200])

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000)).handle(_event("fabrics/u1/03.jpg"))

    assert [e.upload_id for e in outcome.evictions] == [created[0].id]
    assert store.deleted == ["fabrics/u1/00.jpg"]
    assert store.total("fabrics/u1/") == 1000


def test_oldest_first_uses_created_at_not_path_order():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore({"fabrics/u1/z-old.jpg": 600, "fabrics/u1/a-new.jpg": 600})
    old = records.add_upload("u1", "fabrics/u1/z-old.jpg")
    clock.advance(5)
    records.add_upload("u1", "fabrics/u1/a-new.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000)).handle(_event("fabrics/u1/a-new.jpg"))

    assert [e.upload_id for e in outcome.evictions] == [old.id]
    assert list(store.objects) == ["fabrics/u1/a-new.jpg"]


def test_second_run_without_new_uploads_deletes_nothing():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    _seed(store, records, clock, "u1", [400 * MIB] * 10)
    enforcer = QuotaEnforcer(store, records, GuardConfig())

    first = enforcer.handle(_event("fabrics/u1/09.jpg"))
    deleted_after_first = list(store.deleted)
    second = enforcer.handle(_event("fabrics/u1/09.jpg"))

    assert len(first.evictions) == 3
    assert second.evictions == []
    assert store.deleted == deleted_after_first


def test_unrelated_paths_are_ignored_without_touching_stores():
    store = FakeObjectStore({"avatars/u1/me.png": 10})
    records = InMemoryRecordStore()
    enforcer = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1))

    assert enforcer.handle(_event("avatars/u1/me.png")) is None
    assert enforcer.handle(_event("fabrics/only-two")) is None
    assert enforcer.handle(_event("fabrics/u1/")) is None
    assert store.calls == []


def test_missing_size_in_listing_counts_as_zero():
    store = FakeObjectStore({"fabrics/u1/a.jpg": None, "fabrics/u1/b.jpg": 400})
    records = InMemoryRecordStore()
    records.add_upload("u1", "fabrics/u1/a.jpg")
    records.add_upload("u1", "fabrics/u1/b.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=500)).handle(_event("fabrics/u1/b.jpg"))

    assert outcome.usage_bytes == 400
    assert outcome.evictions == []


def test_malformed_reference_deletes_record_without_credit_and_continues():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    refs = ["https://example.invalid/not-a-storage-url", "fabrics/u1/01.jpg", "fabrics/u1/02.jpg"]
    created = _seed(store, records, clock, "u1", [500, 400, 400], refs=refs)

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000)).handle(_event("fabrics/u1/02.jpg"))

    by_id = {e.upload_id: e for e in outcome.evictions}
    assert set(by_id) == {created[0].id, created[1].id}
    assert by_id[created[0].id].outcome == "record_only"
    assert by_id[created[0].id].freed_bytes == 0
    assert by_id[created[1].id].outcome == "evicted"
    assert by_id[created[1].id].freed_bytes == 400
    # The object behind the corrupt record is untouched; its record is gone.
    assert "fabrics/u1/00.jpg" in store.objects
    assert [r.id for r in records.list_uploads_oldest_first("u1")] == [created[2].id]


def test_missing_object_still_removes_record_without_credit():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore({"fabrics/u1/b.jpg": 800})
    ghost = records.add_upload("u1", "fabrics/u1/gone.jpg")
    clock.advance(1)
    real = records.add_upload("u1", "fabrics/u1/b.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=500)).handle(_event("fabrics/u1/b.jpg"))

    outcomes = {e.upload_id: e.outcome for e in outcome.evictions}
    assert outcomes == {ghost.id: "record_only", real.id: "evicted"}
    assert outcome.freed_bytes == 800
    assert records.uploads == {}


def test_object_delete_failure_is_best_effort():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    created = _seed(store, records, clock, "u1", [400, 400, 400])
    store.fail_delete.add("fabrics/u1/00.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=500)).handle(_event("fabrics/u1/02.jpg"))

    by_id = {e.upload_id: e for e in outcome.evictions}
    assert by_id[created[0].id].outcome == "record_only"
    assert by_id[created[0].id].freed_bytes == 0
    assert by_id[created[1].id].outcome == "evicted"
    assert created[0].id not in records.uploads
    assert telemetry.counter_value("guard_best_effort_failures_total", step="eviction_object_delete") == 1


def test_records_without_reference_are_skipped():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore({"fabrics/u1/a.jpg": 700})
    no_ref = records.add_upload("u1", None)
    clock.advance(1)
    real = records.add_upload("u1", "fabrics/u1/a.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=500)).handle(_event("fabrics/u1/a.jpg"))

    assert [e.upload_id for e in outcome.evictions] == [real.id]
    assert no_ref.id in records.uploads


def test_reference_into_another_owner_namespace_is_never_deleted():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore({"fabrics/u2/theirs.jpg": 900, "fabrics/u1/mine.jpg": 900})
    foreign = records.add_upload("u1", "fabrics/u2/theirs.jpg")
    clock.advance(1)
    mine = records.add_upload("u1", "fabrics/u1/mine.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=500)).handle(_event("fabrics/u1/mine.jpg"))

    outcomes = {e.upload_id: e.outcome for e in outcome.evictions}
    assert outcomes == {foreign.id: "record_only", mine.id: "evicted"}
    assert "fabrics/u2/theirs.jpg" in store.objects


def test_firebase_style_download_urls_are_resolved():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    refs = [
        f"https://firebasestorage.googleapis.com/v0/b/{BUCKET}/o/fabrics%2Fu1%2F00.jpg?alt=media&token=abc",
        "fabrics/u1/01.jpg",
    ]
    created = _seed(store, records, clock, "u1", [600, 600], refs=refs)

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000)).handle(_event("fabrics/u1/01.jpg"))

    assert [e.upload_id for e in outcome.evictions] == [created[0].id]
    assert store.deleted == ["fabrics/u1/00.jpg"]


def test_size_lookup_failure_falls_back_to_listed_size():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    _seed(store, records, clock, "u1", [600, 600])
    store.fail_size.add("fabrics/u1/00.jpg")

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000)).handle(_event("fabrics/u1/01.jpg"))

    assert len(outcome.evictions) == 1
    assert outcome.freed_bytes == 600


def test_listing_failure_propagates():
    store = FakeObjectStore()
    store.fail_list = True
    enforcer = QuotaEnforcer(store, InMemoryRecordStore(), GuardConfig())

    with pytest.raises(RuntimeError):
        enforcer.handle(_event("fabrics/u1/a.jpg"))


def test_evictions_run_concurrently_and_are_joined():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    _seed(store, records, clock, "u1", [100, 100, 100, 100])
    barrier = threading.Barrier(3, timeout=5)
    real_delete = store.delete_object

    def _delete_waiting_for_peers(*, bucket: str, path: str) -> None:
        # Sequential deletes would never reach the barrier together.
        barrier.wait()
        real_delete(bucket=bucket, path=path)

    store.delete_object = _delete_waiting_for_peers  # type: ignore[method-assign]

    outcome = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=100)).handle(_event("fabrics/u1/03.jpg"))

    assert [e.outcome for e in outcome.evictions] == ["evicted"] * 3
    assert store.total("fabrics/u1/") == 100


def test_inflight_gauge_tracks_running_evictions():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    _seed(store, records, clock, "u1", [100, 100, 100])
    seen = []
    real_delete = store.delete_object

    def _delete_and_observe(*, bucket: str, path: str) -> None:
        seen.append(telemetry.gauge_value("guard_evictions_inflight"))
        real_delete(bucket=bucket, path=path)

    store.delete_object = _delete_and_observe  # type: ignore[method-assign]

    QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=100)).handle(_event("fabrics/u1/02.jpg"))

    assert seen == [2.0, 2.0]
    assert telemetry.gauge_value("guard_evictions_inflight") == 0.0


def test_convergence_after_many_uploads():
    clock = FakeClock()
    records = InMemoryRecordStore(clock=clock)
    store = FakeObjectStore()
    enforcer = QuotaEnforcer(store, records, GuardConfig(storage_budget_bytes=1000))
    sizes = [130, 270, 90, 410, 60, 333, 120, 250, 75, 500]
    for i, size in enumerate(sizes):
        path = f"fabrics/u1/{i:02d}.jpg"
        store.objects[path] = size
        records.add_upload("u1", path)
        clock.advance(1)
        enforcer.handle(_event(path))
        assert store.total("fabrics/u1/") <= 1000

    # Survivors are always the newest uploads.
    remaining = [r.object_ref for r in records.list_uploads_oldest_first("u1")]
    expected_tail = [f"fabrics/u1/{i:02d}.jpg" for i in range(len(sizes))][-len(remaining):]
    assert remaining == expected_tail

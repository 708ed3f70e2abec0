"""Reclamation engine: two-phase cleanup toward a target usage."""
import pytest

from manuscript_vault.exceptions import StoreUnavailable
from manuscript_vault.models.file_record import FileRecord
from manuscript_vault.services.blob_store import DatabaseBlobStore
from manuscript_vault.services.storage import ReclamationEngine
from manuscript_vault.services.storage.limits import StorageLimits

from conftest import days_ago


class UnreachableAfterFirstEnumeration(DatabaseBlobStore):
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.enumerations = 0

    async def list_all(self):
        self.enumerations += 1
        if self.enumerations > 1:
            raise StoreUnavailable("blob store unreachable")
        return await super().list_all()


async def remaining_ids(session_factory):
    from sqlalchemy import select
    async with session_factory() as session:
        result = await session.execute(select(FileRecord.id))
        return set(result.scalars().all())


async def test_noop_when_already_under_target(db, blob_store, limits, make_record):
    await make_record(size=300, status="failed")
    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.5)
    assert result.freed_bytes == 0
    assert result.deleted_records == []
    assert result.message == "Storage already below target threshold"
    assert result.final == result.initial


async def test_noop_when_exactly_at_target(db, blob_store, limits, make_record):
    await make_record(size=700, status="failed")
    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.7)
    assert result.freed_bytes == 0


async def test_noop_when_target_is_not_a_whole_number_of_bytes(db, blob_store, make_record, session_factory):
    limits = StorageLimits(max_bytes=100)
    kept = await make_record(size=57, status="completed", created_at=days_ago(90))
    # 100 * 0.57 is 56.99999999999999 as a float

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.57)

    assert result.freed_bytes == 0
    assert result.deleted_records == []
    assert result.target_bytes == 57
    assert await remaining_ids(session_factory) == {kept.id}


async def test_one_byte_over_fractional_target_reclaims(db, blob_store, make_record, session_factory):
    limits = StorageLimits(max_bytes=100)
    await make_record(size=58, status="completed", created_at=days_ago(90))

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.57)

    assert result.freed_bytes == 58
    assert await remaining_ids(session_factory) == set()


async def test_phase_one_garbage_is_deleted_before_completed_work(db, blob_store, limits, make_record, session_factory):
    completed_old = await make_record(size=300, status="completed", created_at=days_ago(200))
    failed = await make_record(size=200, status="failed", created_at=days_ago(5))
    stale = await make_record(size=200, status="uploaded", created_at=days_ago(60))
    fresh_upload = await make_record(size=200, status="uploaded", created_at=days_ago(1))
    # 900 / 1000 used; target 0.5 -> free 400

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.5)

    assert [d.record_id for d in result.deleted_records] == [stale.id, failed.id]
    assert result.freed_bytes == 400
    assert result.final.total_bytes == 500
    assert await remaining_ids(session_factory) == {completed_old.id, fresh_upload.id}


async def test_phase_two_deletes_oldest_completed_when_garbage_is_not_enough(db, blob_store, limits, make_record, session_factory):
    newer = await make_record(size=300, status="completed", created_at=days_ago(10))
    older = await make_record(size=300, status="completed", created_at=days_ago(20))
    failed = await make_record(size=100, status="failed", created_at=days_ago(1))
    processing = await make_record(size=200, status="processing", created_at=days_ago(2), processing_started_at=days_ago(2))
    # 900 used; target 0.5 -> free 400: failed (100) then older completed (300)

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.5)

    assert [d.record_id for d in result.deleted_records] == [failed.id, older.id]
    assert result.freed_bytes == 400
    assert await remaining_ids(session_factory) == {newer.id, processing.id}


async def test_output_blobs_count_toward_freed_bytes(db, blob_store, limits, make_record):
    record = await make_record(size=100, status="failed", outputs=[200, 300])
    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.1)
    assert result.deleted_records[0].record_id == record.id
    assert result.freed_bytes == 600
    assert result.final.total_bytes == 0


async def test_phase_two_is_bounded_by_batch_size(db, blob_store, make_record):
    limits = StorageLimits(max_bytes=1000, cleanup_batch_size=2)
    for age in (30, 20, 10):
        await make_record(size=300, status="completed", created_at=days_ago(age))

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.05)

    assert len(result.deleted_records) == 2
    assert result.final.total_bytes == 300

    # A second call makes further progress
    again = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.05)
    assert len(again.deleted_records) == 1
    assert again.final.total_bytes == 0


async def test_default_target_comes_from_limits(db, blob_store, limits, make_record):
    await make_record(size=500, status="completed", created_at=days_ago(3))
    await make_record(size=450, status="completed", created_at=days_ago(2))
    result = await ReclamationEngine(db, blob_store, limits).reclaim_to()
    assert result.target_bytes == 700
    assert result.final.total_bytes == 450


async def test_record_failure_is_reported_and_loop_continues(db, blob_store, limits, make_record, monkeypatch):
    first = await make_record(size=200, status="failed", created_at=days_ago(3))
    second = await make_record(size=200, status="failed", created_at=days_ago(2))
    first_id, second_id = first.id, second.id

    from manuscript_vault.services.storage import reclamation
    real_delete = reclamation.delete_record_completely

    async def failing_first(session, store, record):
        if record.id == first_id:
            raise RuntimeError("record store timeout")
        return await real_delete(session, store, record)

    monkeypatch.setattr(reclamation, "delete_record_completely", failing_first)

    result = await ReclamationEngine(db, blob_store, limits).reclaim_to(0.1)

    assert [d.record_id for d in result.deleted_records] == [second_id]
    assert result.errors == [{"file_id": str(first_id), "error": "record store timeout"}]


async def test_second_run_is_a_noop(db, blob_store, limits, make_record):
    await make_record(size=500, status="failed", created_at=days_ago(2))
    await make_record(size=400, status="completed", created_at=days_ago(3))
    engine = ReclamationEngine(db, blob_store, limits)
    first = await engine.reclaim_to(0.5)
    second = await engine.reclaim_to(0.5)
    assert first.freed_bytes == 500
    assert second.freed_bytes == 0
    assert second.deleted_records == []


@pytest.mark.parametrize("target", [0, -0.1, 1.5])
async def test_rejects_invalid_target(db, blob_store, limits, target):
    with pytest.raises(ValueError):
        await ReclamationEngine(db, blob_store, limits).reclaim_to(target)


async def test_deletions_are_reported_when_final_usage_is_unavailable(db, limits, make_record, session_factory):
    failed = await make_record(size=400, status="failed", created_at=days_ago(2))
    await make_record(size=100, status="completed", created_at=days_ago(5))
    store = UnreachableAfterFirstEnumeration(session_factory)

    result = await ReclamationEngine(db, store, limits).reclaim_to(0.3)

    assert [d.record_id for d in result.deleted_records] == [failed.id]
    assert result.freed_bytes == 400
    assert result.final == result.initial
    assert result.errors == [{"file_id": None, "error": "Final usage unavailable: blob store unreachable"}]

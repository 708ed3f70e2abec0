"""Orphan scanner: blobs without an owning file record."""
from manuscript_vault.exceptions import BlobDeleteFailed
from manuscript_vault.services.storage import OrphanScanner


async def test_deletes_only_unreferenced_blobs(db, blob_store, make_record):
    kept = await make_record(size=10, outputs=[10])  # two referenced blobs
    for size in (5, 6, 7):
        await blob_store.store(b"x" * size, "stray.bin")

    result = await OrphanScanner(db, blob_store).reclaim_orphans()

    assert result.deleted_count == 3
    assert result.freed_bytes == 18
    remaining = {b.blob_id for b in await blob_store.list_all()}
    assert remaining == {kept.input_blob_id, kept.output_files[0].blob_id}


async def test_second_scan_deletes_nothing(db, blob_store, make_record):
    await make_record(size=10)
    await blob_store.store(b"orphan")
    first = await OrphanScanner(db, blob_store).reclaim_orphans()
    second = await OrphanScanner(db, blob_store).reclaim_orphans()
    assert first.deleted_count == 1
    assert second.deleted_count == 0
    assert second.freed_bytes == 0


async def test_failed_orphan_delete_is_reported(db, blob_store):
    bad = await blob_store.store(b"bad")
    await blob_store.store(b"good")
    real_delete = blob_store.delete

    async def flaky_delete(blob_id):
        if blob_id == bad:
            raise BlobDeleteFailed(blob_id, RuntimeError("locked"))
        return await real_delete(blob_id)

    blob_store.delete = flaky_delete
    result = await OrphanScanner(db, blob_store).reclaim_orphans()

    assert result.deleted_count == 1
    assert result.errors[0]["blob_id"] == bad

"""Conversion worker: status transitions and output blob bookkeeping."""
import pytest

from manuscript_vault.config import settings
from manuscript_vault.exceptions import ConversionError, StoreUnavailable
from manuscript_vault.models.file_record import FileRecord
from manuscript_vault.services.blob_store import DatabaseBlobStore
from manuscript_vault.services.conversion_worker import (
    CONVERTERS,
    ConvertedFile,
    convert_with_external_command,
    process_next_upload,
)

from conftest import days_ago


async def two_pages(original_name, data):
    return [
        ConvertedFile(file_name=f"{original_name}.page1.png", data=b"p" * 11),
        ConvertedFile(file_name=f"{original_name}.page2.png", data=b"p" * 13),
    ]


async def broken(original_name, data):
    raise ConversionError("corrupt manuscript")


class FlakyBlobStore(DatabaseBlobStore):
    """Accepts the first write after construction, then refuses."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.writes = 0

    async def store(self, data, filename=None):
        self.writes += 1
        if self.writes > 1:
            raise StoreUnavailable("disk full")
        return await super().store(data, filename)


async def reload(session_factory, record_id) -> FileRecord:
    async with session_factory() as db:
        return await db.get(FileRecord, record_id)


async def test_nothing_queued(session_factory, blob_store, make_record):
    await make_record(status="completed")
    assert await process_next_upload(session_factory, blob_store) is None


async def test_successful_conversion_stores_outputs(session_factory, blob_store, make_record, monkeypatch):
    monkeypatch.setitem(CONVERTERS, "pdf", two_pages)
    record = await make_record(size=50, status="uploaded")

    assert await process_next_upload(session_factory, blob_store) == record.id

    done = await reload(session_factory, record.id)
    assert done.status == "completed"
    assert done.processing_started_at is not None
    assert done.processing_completed_at is not None
    assert [o.file_size for o in done.output_files] == [11, 13]
    assert done.total_size == 74
    assert sorted(b.length for b in await blob_store.list_all()) == [11, 13, 50]


async def test_oldest_upload_goes_first(session_factory, blob_store, make_record, monkeypatch):
    monkeypatch.setitem(CONVERTERS, "pdf", two_pages)
    await make_record(status="uploaded", created_at=days_ago(1))
    older = await make_record(status="uploaded", created_at=days_ago(2))

    assert await process_next_upload(session_factory, blob_store) == older.id


async def test_failed_conversion_marks_record(session_factory, blob_store, make_record, monkeypatch):
    monkeypatch.setitem(CONVERTERS, "pdf", broken)
    record = await make_record(size=50, status="uploaded")

    await process_next_upload(session_factory, blob_store)

    failed = await reload(session_factory, record.id)
    assert failed.status == "failed"
    assert failed.error_message == "corrupt manuscript"
    assert failed.output_files == []


async def test_partial_outputs_are_discarded(session_factory, make_record, monkeypatch):
    monkeypatch.setitem(CONVERTERS, "pdf", two_pages)
    record = await make_record(size=50, status="uploaded")
    flaky = FlakyBlobStore(session_factory)

    await process_next_upload(session_factory, flaky)

    failed = await reload(session_factory, record.id)
    assert failed.status == "failed"
    assert failed.error_message == "disk full"
    # Only the input blob survives
    assert [b.length for b in await flaky.list_all()] == [50]


async def test_unconfigured_external_converter_fails_record(session_factory, blob_store, make_record, monkeypatch):
    monkeypatch.setattr(settings, "CONVERTER_COMMAND", "")
    record = await make_record(size=20, status="uploaded", file_type="epub")

    await process_next_upload(session_factory, blob_store)

    failed = await reload(session_factory, record.id)
    assert failed.status == "failed"
    assert failed.error_message == "No converter command configured"


async def test_external_converter_collects_output_dir(monkeypatch):
    monkeypatch.setattr(settings, "CONVERTER_COMMAND", "cp {input} {output_dir}")

    outputs = await convert_with_external_command("book.pdf", b"content")

    assert outputs == [ConvertedFile(file_name="book.pdf", data=b"content")]


async def test_external_converter_nonzero_exit(monkeypatch):
    monkeypatch.setattr(settings, "CONVERTER_COMMAND", "false {input}")

    with pytest.raises(ConversionError, match="exited with code 1"):
        await convert_with_external_command("book.pdf", b"content")

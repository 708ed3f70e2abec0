"""File record queries and complete record deletion.

Deleting a record always removes its blobs first and the row last. A
blob that is already gone counts as zero freed bytes; a blob that fails
to delete is logged and skipped so the record itself is still removed.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from manuscript_vault.exceptions import BlobDeleteFailed, BlobNotFound
from manuscript_vault.models.file_record import FileRecord, OutputFile
from manuscript_vault.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class DeletedBlob:
    kind: str  # "input" | "output"
    name: str
    blob_id: str
    size: int


@dataclass
class RecordDeletion:
    record_id: uuid.UUID
    file_name: str
    freed_bytes: int
    created_at: datetime | None
    deleted_at: datetime
    deleted_blobs: list[DeletedBlob] = field(default_factory=list)
    blob_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file_id": str(self.record_id),
            "file_name": self.file_name,
            "deleted_size": self.freed_bytes,
            "created_at": self.created_at,
            "deleted_at": self.deleted_at,
            "deleted_files": [{"type": b.kind, "name": b.name, "size": b.size} for b in self.deleted_blobs],
            "blob_errors": self.blob_errors,
        }


# ── Queries ──────────────────────────────────────────────────────

async def get_record(db: AsyncSession, record_id: uuid.UUID) -> FileRecord | None:
    """Load a record with fresh state (outputs included)."""
    result = await db.execute(
        select(FileRecord)
        .where(FileRecord.id == record_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_cleanup_candidates(db: AsyncSession, stale_after, now: datetime | None = None) -> list[FileRecord]:
    """Failed, stale uploaded and stuck processing records, oldest first."""
    cutoff = (now or datetime.now(timezone.utc)) - stale_after
    result = await db.execute(
        select(FileRecord)
        .where(
            or_(
                FileRecord.status == "failed",
                and_(FileRecord.status == "uploaded", FileRecord.created_at < cutoff),
                and_(FileRecord.status == "processing", FileRecord.processing_started_at < cutoff),
            )
        )
        .order_by(FileRecord.created_at, FileRecord.id)
    )
    return list(result.scalars().all())


async def get_oldest_files(db: AsyncSession, limit: int = 50, status: str | None = None) -> list[FileRecord]:
    query = select(FileRecord).order_by(FileRecord.created_at, FileRecord.id).limit(limit)
    if status:
        query = query.where(FileRecord.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_referenced_blob_ids(db: AsyncSession) -> set[str]:
    """Every blob id held by a record, as input or as any output."""
    inputs = await db.execute(select(FileRecord.input_blob_id).where(FileRecord.input_blob_id.is_not(None)))
    outputs = await db.execute(select(OutputFile.blob_id).where(OutputFile.blob_id.is_not(None)))
    return {str(b) for b in inputs.scalars()} | {str(b) for b in outputs.scalars()}


# ── Deletion ─────────────────────────────────────────────────────

async def _delete_blob(blob_store: BlobStore, blob_id: str, kind: str, name: str, deletion: RecordDeletion) -> None:
    try:
        size = await blob_store.delete(blob_id)
    except BlobNotFound:
        logger.debug(f"Blob {blob_id} ({kind} {name}) already gone")
        return
    except BlobDeleteFailed as e:
        logger.error(f"Error deleting {kind} blob {blob_id} of record {deletion.record_id}: {e}")
        deletion.blob_errors.append(str(e))
        return
    deletion.freed_bytes += size
    deletion.deleted_blobs.append(DeletedBlob(kind=kind, name=name, blob_id=blob_id, size=size))


async def delete_record_completely(db: AsyncSession, blob_store: BlobStore, record: FileRecord) -> RecordDeletion:
    """Delete a record's input blob, its stored output blobs, then the record.

    Safe to retry. Raises only if the record row itself cannot be deleted.
    """
    deletion = RecordDeletion(
        record_id=record.id,
        file_name=record.original_name,
        freed_bytes=0,
        created_at=record.created_at,
        deleted_at=datetime.now(timezone.utc),
    )

    if record.input_blob_id:
        await _delete_blob(blob_store, record.input_blob_id, "input", record.original_name, deletion)

    for output in record.output_files:
        if output.stored_in_blob_store and output.blob_id:
            await _delete_blob(blob_store, output.blob_id, "output", output.file_name, deletion)

    await db.delete(record)
    await db.commit()
    return deletion

"""Orphan scanner: delete blobs that no file record references.

References are snapshotted before the blob store is enumerated. A blob
stored after the reference snapshot but before its record is committed
can look orphaned and be deleted; running a scan concurrently with
uploads accepts that window. No lock is taken.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from manuscript_vault.exceptions import BlobDeleteFailed, BlobNotFound
from manuscript_vault.services.blob_store import BlobStore
from manuscript_vault.services.storage.records import get_referenced_blob_ids

logger = logging.getLogger(__name__)


@dataclass
class OrphanScanResult:
    deleted_count: int = 0
    freed_bytes: int = 0
    errors: list[dict] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Cleaned up {self.deleted_count} orphaned blobs"


class OrphanScanner:
    def __init__(self, db: AsyncSession, blob_store: BlobStore):
        self.db = db
        self.blob_store = blob_store

    async def reclaim_orphans(self) -> OrphanScanResult:
        referenced = await get_referenced_blob_ids(self.db)
        blobs = await self.blob_store.list_all()
        orphans = [b for b in blobs if b.blob_id not in referenced]
        logger.info(f"Found {len(orphans)} orphaned blobs out of {len(blobs)}")

        result = OrphanScanResult()
        for orphan in orphans:
            try:
                size = await self.blob_store.delete(orphan.blob_id)
            except BlobNotFound:
                continue
            except BlobDeleteFailed as e:
                logger.error(f"Error deleting orphaned blob {orphan.blob_id}: {e}")
                result.errors.append({"blob_id": orphan.blob_id, "error": str(e)})
                continue
            result.deleted_count += 1
            result.freed_bytes += size
            logger.info(f"Deleted orphaned blob: {orphan.filename or orphan.blob_id} ({size / 1024:.2f} KB)")
        return result

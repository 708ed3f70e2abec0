"""Reclamation engine: free blob store space down to a target usage.

Two phases. Phase 1 deletes reclaimable records (failed, stale uploaded,
stuck processing) oldest first. Only if that is not enough does phase 2
delete completed records, oldest first, at most `cleanup_batch_size` per
call; callers needing more space invoke again.

Per-record failures are collected and never stop the loop.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from manuscript_vault.exceptions import StoreUnavailable
from manuscript_vault.services.blob_store import BlobStore
from manuscript_vault.services.storage.limits import StorageLimits
from manuscript_vault.services.storage.records import (
    RecordDeletion,
    delete_record_completely,
    get_cleanup_candidates,
    get_oldest_files,
    get_record,
)
from manuscript_vault.services.storage.usage import MB, UsageAccountant, UsageSnapshot

logger = logging.getLogger(__name__)


@dataclass
class ReclaimResult:
    initial: UsageSnapshot
    final: UsageSnapshot
    target_bytes: int
    bytes_to_free: float
    deleted_records: list[RecordDeletion] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    @property
    def freed_bytes(self) -> int:
        return sum(d.freed_bytes for d in self.deleted_records)

    @property
    def message(self) -> str:
        if self.bytes_to_free <= 0:
            return "Storage already below target threshold"
        return f"Cleanup completed. Deleted {len(self.deleted_records)} files."


class ReclamationEngine:
    def __init__(self, db: AsyncSession, blob_store: BlobStore, limits: StorageLimits):
        self.db = db
        self.blob_store = blob_store
        self.limits = limits
        self.accountant = UsageAccountant(blob_store, limits)

    async def reclaim_to(self, target_fraction: float | None = None) -> ReclaimResult:
        """Delete reclaimable records until usage is at or below target_fraction."""
        if target_fraction is None:
            target_fraction = self.limits.target_after_cleanup_fraction
        if not 0 < target_fraction <= 1:
            raise ValueError(f"Target fraction must be in (0, 1], got {target_fraction}")

        initial = await self.accountant.compute_usage()
        target_bytes = round(self.limits.max_bytes * target_fraction)

        # Compare fractions, not truncated byte counts
        if initial.usage_fraction <= target_fraction:
            return ReclaimResult(initial=initial, final=initial, target_bytes=target_bytes, bytes_to_free=0)
        bytes_to_free = initial.total_bytes - self.limits.max_bytes * target_fraction

        logger.info(f"Starting storage cleanup, need to free {bytes_to_free / MB:.2f} MB")
        deleted: list[RecordDeletion] = []
        errors: list[dict] = []

        # Phase 1: garbage first
        candidates = await get_cleanup_candidates(self.db, self.limits.stale_after)
        logger.info(f"Found {len(candidates)} cleanup candidates")
        freed = await self._delete_until(
            [c.id for c in candidates], bytes_to_free, 0, deleted, errors
        )

        # Phase 2: oldest completed work, bounded per call
        if freed < bytes_to_free:
            oldest = await get_oldest_files(self.db, limit=self.limits.cleanup_batch_size, status="completed")
            logger.info(f"Phase 2: considering {len(oldest)} oldest completed files")
            freed = await self._delete_until(
                [r.id for r in oldest], bytes_to_free, freed, deleted, errors
            )

        try:
            final = await self.accountant.compute_usage()
        except StoreUnavailable as e:
            # Deletions already happened; report them against the initial snapshot
            logger.error(f"Could not compute usage after cleanup: {e}")
            errors.append({"file_id": None, "error": f"Final usage unavailable: {e}"})
            final = initial
        logger.info(f"Cleanup completed. Freed {freed / MB:.2f} MB across {len(deleted)} files")
        return ReclaimResult(
            initial=initial,
            final=final,
            target_bytes=target_bytes,
            bytes_to_free=bytes_to_free,
            deleted_records=deleted,
            errors=errors,
        )

    async def _delete_until(
        self,
        record_ids: list,
        bytes_to_free: float,
        freed: int,
        deleted: list[RecordDeletion],
        errors: list[dict],
    ) -> int:
        for record_id in record_ids:
            if freed >= bytes_to_free:
                break
            try:
                record = await get_record(self.db, record_id)
                if record is None:
                    # Removed by someone else since the candidate query
                    continue
                result = await delete_record_completely(self.db, self.blob_store, record)
            except Exception as e:
                logger.error(f"Error deleting file {record_id}: {e}")
                errors.append({"file_id": str(record_id), "error": str(e)})
                await self.db.rollback()
                continue
            freed += result.freed_bytes
            deleted.append(result)
            logger.info(f"Deleted: {result.file_name} ({result.freed_bytes / 1024:.2f} KB)")
        return freed


async def reclaim_in_background(session_factory, blob_store: BlobStore, limits: StorageLimits) -> None:
    """Run a default-target reclamation in its own session. Used after uploads hint at cleanup."""
    try:
        async with session_factory() as db:
            result = await ReclamationEngine(db, blob_store, limits).reclaim_to()
        logger.info(f"Background cleanup: {result.message} (freed {result.freed_bytes / MB:.2f} MB)")
    except Exception as e:
        logger.error(f"Background cleanup failed: {e}")

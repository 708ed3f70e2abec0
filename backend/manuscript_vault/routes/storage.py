"""Storage administration API - quota stats, reports and space reclamation."""
import logging
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from manuscript_vault.auth import require_admin
from manuscript_vault.database import get_db
from manuscript_vault.exceptions import RecordNotFound, StoreUnavailable
from manuscript_vault.models.file_record import FileRecord
from manuscript_vault.schemas.storage import (
    CleanupRequest,
    CleanupResponse,
    DeleteFilesRequest,
    DeleteFilesResponse,
    FileListResponse,
    OrphanCleanupResponse,
    StorageReportResponse,
    StorageStatsResponse,
)
from manuscript_vault.services.blob_store import BlobStore, get_blob_store
from manuscript_vault.services.storage import OrphanScanner, ReclamationEngine, UsageAccountant
from manuscript_vault.services.storage.limits import StorageLimits, get_storage_limits
from manuscript_vault.services.storage.records import (
    delete_record_completely,
    get_cleanup_candidates,
    get_oldest_files,
    get_record,
)
from manuscript_vault.services.storage.reporting import totals_by_file_type, totals_by_owner, totals_by_status
from manuscript_vault.services.storage.usage import MB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/storage", tags=["storage"], dependencies=[Depends(require_admin)])


async def _current_stats(blob_store: BlobStore, limits: StorageLimits) -> dict:
    try:
        snapshot = await UsageAccountant(blob_store, limits).compute_usage()
    except StoreUnavailable as e:
        logger.error(f"Error getting storage stats: {e}")
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
    return snapshot.to_dict()


@router.get("/stats", response_model=StorageStatsResponse)
async def get_stats(
    blob_store: BlobStore = Depends(get_blob_store),
    limits: StorageLimits = Depends(get_storage_limits),
):
    """Current blob store usage against capacity."""
    return await _current_stats(blob_store, limits)


@router.get("/report", response_model=StorageReportResponse)
async def get_report(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    limits: StorageLimits = Depends(get_storage_limits),
):
    """Usage plus record totals grouped by status, owner and file type."""
    stats = await _current_stats(blob_store, limits)
    candidates = await get_cleanup_candidates(db, limits.stale_after)
    return {
        "stats": stats,
        "cleanup_candidates_count": len(candidates),
        "status_counts": [g.to_dict() for g in await totals_by_status(db)],
        "user_counts": [g.to_dict() for g in await totals_by_owner(db, limit=10)],
        "type_counts": [g.to_dict() for g in await totals_by_file_type(db)],
    }


@router.get("/cleanup-candidates", response_model=FileListResponse)
async def list_cleanup_candidates(
    db: AsyncSession = Depends(get_db),
    limits: StorageLimits = Depends(get_storage_limits),
):
    """Failed, stale and stuck records that phase 1 of cleanup would remove."""
    candidates = await get_cleanup_candidates(db, limits.stale_after)
    return {"count": len(candidates), "files": [_to_summary(f) for f in candidates]}


@router.get("/oldest-files", response_model=FileListResponse)
async def list_oldest_files(
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    files = await get_oldest_files(db, limit=limit)
    return {"count": len(files), "files": [_to_summary(f) for f in files]}


@router.post("/cleanup", response_model=CleanupResponse)
async def run_cleanup(
    body: CleanupRequest | None = None,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    limits: StorageLimits = Depends(get_storage_limits),
):
    """Reclaim space down to targetPercent (defaults to the post-cleanup target)."""
    target = body.target_percent if body else None
    try:
        result = await ReclamationEngine(db, blob_store, limits).reclaim_to(target)
    except StoreUnavailable as e:
        logger.error(f"Error performing cleanup: {e}")
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
    return {
        "success": True,
        "message": result.message,
        "initial_stats": result.initial.to_dict(),
        "final_stats": result.final.to_dict(),
        "deleted_files": [d.to_dict() for d in result.deleted_records],
        "errors": result.errors,
        "freed_size": result.freed_bytes,
        "freed_size_mb": round(result.freed_bytes / MB, 2),
    }


@router.post("/cleanup-orphaned", response_model=OrphanCleanupResponse)
async def run_orphan_cleanup(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Delete blobs that no file record references."""
    try:
        result = await OrphanScanner(db, blob_store).reclaim_orphans()
    except StoreUnavailable as e:
        logger.error(f"Error cleaning orphaned blobs: {e}")
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")
    return {
        "success": True,
        "message": result.message,
        "deleted_count": result.deleted_count,
        "freed_size": result.freed_bytes,
        "freed_size_mb": round(result.freed_bytes / MB, 2),
        "errors": result.errors,
    }


@router.delete("/files", response_model=DeleteFilesResponse)
async def delete_files(
    body: DeleteFilesRequest,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    limits: StorageLimits = Depends(get_storage_limits),
):
    """Delete specific records completely. Per-id failures do not stop the batch."""
    if not body.file_ids:
        raise HTTPException(status_code=400, detail="Please provide an array of file IDs to delete")

    deleted = []
    errors = []
    total_freed = 0
    for file_id in body.file_ids:
        try:
            record = await get_record(db, uuid.UUID(file_id))
        except ValueError:
            record = None
        if record is None:
            errors.append({"file_id": file_id, "error": str(RecordNotFound(file_id))})
            continue
        try:
            result = await delete_record_completely(db, blob_store, record)
        except Exception as e:
            logger.error(f"Error deleting file {file_id}: {e}")
            await db.rollback()
            errors.append({"file_id": file_id, "error": str(e)})
            continue
        deleted.append(result.to_dict())
        total_freed += result.freed_bytes

    try:
        current_stats = (await UsageAccountant(blob_store, limits).compute_usage()).to_dict()
    except StoreUnavailable as e:
        logger.warning(f"Could not refresh storage stats after delete: {e}")
        current_stats = None

    return {
        "success": bool(deleted) or not errors,
        "message": f"Deleted {len(deleted)} files",
        "deleted_files": deleted,
        "errors": errors,
        "total_freed_size": total_freed,
        "total_freed_size_mb": round(total_freed / MB, 2),
        "current_stats": current_stats,
    }


def _to_summary(record: FileRecord) -> dict:
    return {
        "id": record.id,
        "original_name": record.original_name,
        "status": record.status,
        "created_at": record.created_at,
        "file_size": record.file_size or 0,
        "output_files_count": len(record.output_files),
        "total_size": record.total_size,
        "uploaded_by": record.uploaded_by,
    }

"""Files API routes - manuscript upload, metadata, downloads and deletion."""
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, UploadFile, File as FastAPIFile
from fastapi.responses import Response
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from manuscript_vault.auth import CurrentUser, get_current_user
from manuscript_vault.config import settings
from manuscript_vault.database import get_db, get_session_factory
from manuscript_vault.exceptions import BlobNotFound, StorageError, StoreUnavailable
from manuscript_vault.models.file_record import FileRecord
from manuscript_vault.schemas.common import DeleteResponse
from manuscript_vault.schemas.file import FileRecordResponse
from manuscript_vault.services.blob_store import BlobStore, get_blob_store
from manuscript_vault.services.storage import AdmissionController, UsageAccountant, delete_record_completely
from manuscript_vault.services.storage.limits import StorageLimits, get_storage_limits
from manuscript_vault.services.storage.reclamation import reclaim_in_background

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])

MIME_TYPES = {
    "pdf": "application/pdf",
    "epub": "application/epub+zip",
}


@router.post("/upload", response_model=FileRecordResponse, status_code=201)
async def upload_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = FastAPIFile(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    limits: StorageLimits = Depends(get_storage_limits),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Upload a manuscript if the blob store quota admits it."""
    original_name = file.filename or "unnamed"
    file_type = Path(original_name).suffix.lower().lstrip(".")
    if file_type not in settings.allowed_file_types:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{file_type or 'none'}'. Allowed: {', '.join(sorted(settings.allowed_file_types))}",
        )

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    decision = await AdmissionController(UsageAccountant(blob_store, limits)).check_admission(len(contents))
    if decision.error:
        logger.warning(f"Admission check failed open for {original_name}: {decision.error}")
    if not decision.allow:
        logger.info(f"Upload of {original_name} ({len(contents)} bytes) refused: {decision.denial.code}")
        raise HTTPException(
            status_code=507,
            detail={
                "code": decision.denial.code,
                "message": decision.reason,
                "stats": decision.snapshot.to_dict() if decision.snapshot else None,
            },
        )

    try:
        blob_id = await blob_store.store(contents, original_name)
    except StoreUnavailable as e:
        logger.error(f"Could not store upload {original_name}: {e}")
        raise HTTPException(status_code=503, detail="Storage unavailable")

    record = FileRecord(
        original_name=original_name,
        file_type=file_type,
        mime_type=file.content_type or MIME_TYPES.get(file_type),
        file_size=len(contents),
        status="uploaded",
        input_blob_id=blob_id,
        uploaded_by=user.id,
        output_files=[],
    )
    try:
        db.add(record)
        await db.commit()
    except Exception:
        await db.rollback()
        # Do not leave an unreferenced blob behind
        try:
            await blob_store.delete(blob_id)
        except StorageError as cleanup_err:
            logger.error(f"Could not remove blob {blob_id} after failed record insert: {cleanup_err}")
        raise
    await db.refresh(record)

    if decision.should_cleanup:
        logger.info(f"Storage usage high after upload of {original_name}, scheduling cleanup")
        background_tasks.add_task(reclaim_in_background, session_factory, blob_store, limits)

    return record


@router.get("", response_model=list[FileRecordResponse])
async def list_files(
    uploaded_by: Optional[str] = Query(None, alias="uploadedBy"),
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's files, newest first. Admins may list any owner's files."""
    owner = uploaded_by if (user.is_admin and uploaded_by) else user.id
    query = (
        select(FileRecord)
        .where(FileRecord.uploaded_by == owner)
        .order_by(desc(FileRecord.created_at))
        .limit(limit)
        .offset(offset)
    )
    if status:
        query = query.where(FileRecord.status == status)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{file_id}", response_model=FileRecordResponse)
async def get_file_metadata(
    file_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get file metadata by ID."""
    return await _get_owned_record(db, file_id, user)


@router.get("/{file_id}/download")
async def download_file(
    file_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Download the uploaded manuscript."""
    file_rec = await _get_owned_record(db, file_id, user)
    if not file_rec.input_blob_id:
        raise HTTPException(status_code=404, detail="File content not found")
    data = await _fetch_blob(blob_store, file_rec.input_blob_id)
    return _attachment(data, file_rec.original_name, file_rec.mime_type)


@router.get("/{file_id}/outputs/{index}/download")
async def download_output(
    file_id: UUID,
    index: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Download one conversion output by its position."""
    file_rec = await _get_owned_record(db, file_id, user)
    if index < 0 or index >= len(file_rec.output_files):
        raise HTTPException(status_code=404, detail="Output file not found")
    output = file_rec.output_files[index]
    if not output.stored_in_blob_store or not output.blob_id:
        raise HTTPException(status_code=404, detail="Output file content not found")
    data = await _fetch_blob(blob_store, output.blob_id)
    return _attachment(data, output.file_name, None)


@router.delete("/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Delete a file, its outputs and its record."""
    file_rec = await _get_owned_record(db, file_id, user)
    result = await delete_record_completely(db, blob_store, file_rec)
    return {"deleted": True, "id": str(file_id), "freed_size": result.freed_bytes}


async def _get_owned_record(db: AsyncSession, file_id: UUID, user: CurrentUser) -> FileRecord:
    result = await db.execute(select(FileRecord).where(FileRecord.id == file_id))
    file_rec = result.scalar_one_or_none()
    # Other users' files are reported as missing
    if not file_rec or (file_rec.uploaded_by != user.id and not user.is_admin):
        raise HTTPException(status_code=404, detail="File not found")
    return file_rec


async def _fetch_blob(blob_store: BlobStore, blob_id: str) -> bytes:
    try:
        return await blob_store.fetch(blob_id)
    except BlobNotFound:
        raise HTTPException(status_code=404, detail="File content not found")
    except StoreUnavailable as e:
        logger.error(f"Could not fetch blob {blob_id}: {e}")
        raise HTTPException(status_code=503, detail="Storage unavailable")


def _attachment(data: bytes, filename: str, media_type: str | None) -> Response:
    return Response(
        content=data,
        media_type=media_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )

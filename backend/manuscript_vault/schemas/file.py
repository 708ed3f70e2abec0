"""File record request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from manuscript_vault.schemas.base import ByteCount, CamelORMModel


class OutputFileResponse(CamelORMModel):
    file_name: str
    file_size: ByteCount = 0
    stored_in_blob_store: bool = True


class FileRecordResponse(CamelORMModel):
    id: uuid.UUID
    original_name: str
    file_type: str
    mime_type: Optional[str] = None
    file_size: ByteCount = 0
    status: str
    error_message: Optional[str] = None
    output_files: list[OutputFileResponse] = []
    total_size: ByteCount = 0
    uploaded_by: str = "default"
    created_at: datetime
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


class FileSummaryResponse(CamelORMModel):
    """Compact row for the admin candidate and oldest-file listings."""
    id: uuid.UUID
    original_name: str
    status: str
    created_at: datetime
    file_size: ByteCount = 0
    output_files_count: int = 0
    total_size: ByteCount = 0
    uploaded_by: str = "default"

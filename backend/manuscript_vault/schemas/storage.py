"""Storage administration request/response schemas."""
from typing import Optional
from datetime import datetime
from pydantic import Field
from manuscript_vault.schemas.base import ByteCount, CamelModel
from manuscript_vault.schemas.file import FileSummaryResponse


class StorageStatsResponse(CamelModel):
    total_size: ByteCount
    total_size_mb: float
    max_storage: ByteCount
    max_storage_mb: float
    usage_fraction: float
    usage_percent: float
    file_count: int
    available: int  # negative when over capacity
    available_mb: float
    status: str


class GroupTotalsResponse(CamelModel):
    key: Optional[str] = None
    count: int
    input_size: ByteCount
    output_size: ByteCount
    total_size: ByteCount


class StorageReportResponse(CamelModel):
    stats: StorageStatsResponse
    cleanup_candidates_count: int
    status_counts: list[GroupTotalsResponse]
    user_counts: list[GroupTotalsResponse]
    type_counts: list[GroupTotalsResponse]


class FileListResponse(CamelModel):
    count: int
    files: list[FileSummaryResponse]


class DeletedFileResponse(CamelModel):
    file_id: str
    file_name: str
    deleted_size: ByteCount
    created_at: Optional[datetime] = None
    deleted_at: datetime
    deleted_files: list[dict] = []
    blob_errors: list[str] = []


class ItemError(CamelModel):
    file_id: Optional[str] = None
    blob_id: Optional[str] = None
    error: str


class CleanupRequest(CamelModel):
    # Fraction of capacity, e.g. 0.6 for 60%
    target_percent: Optional[float] = Field(None, gt=0, le=1)


class CleanupResponse(CamelModel):
    success: bool = True
    message: str
    initial_stats: StorageStatsResponse
    final_stats: StorageStatsResponse
    deleted_files: list[DeletedFileResponse]
    errors: list[ItemError] = []
    freed_size: ByteCount
    freed_size_mb: float


class OrphanCleanupResponse(CamelModel):
    success: bool = True
    message: str
    deleted_count: int
    freed_size: ByteCount
    freed_size_mb: float
    errors: list[ItemError] = []


class DeleteFilesRequest(CamelModel):
    file_ids: list[str] = []


class DeleteFilesResponse(CamelModel):
    success: bool
    message: str
    deleted_files: list[DeletedFileResponse]
    errors: list[ItemError]
    total_freed_size: ByteCount
    total_freed_size_mb: float
    current_stats: Optional[StorageStatsResponse] = None

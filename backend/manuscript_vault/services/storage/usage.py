"""Usage accounting: total blob store bytes against the configured capacity.

Every call re-enumerates the blob store. Nothing is cached, so a snapshot
taken right after a delete always reflects it.
"""
import logging
from dataclasses import dataclass

from manuscript_vault.services.blob_store import BlobStore
from manuscript_vault.services.storage.limits import StorageLimits

logger = logging.getLogger(__name__)

MB = 1024 * 1024

STATUS_NORMAL = "normal"
STATUS_WARNING = "warning"
STATUS_HIGH = "high"
STATUS_CRITICAL = "critical"


@dataclass(frozen=True)
class UsageSnapshot:
    total_bytes: int
    file_count: int
    max_bytes: int
    usage_fraction: float
    status: str

    @property
    def available_bytes(self) -> int:
        return self.max_bytes - self.total_bytes

    @property
    def usage_percent(self) -> float:
        return self.usage_fraction * 100

    def to_dict(self) -> dict:
        return {
            "total_size": self.total_bytes,
            "total_size_mb": round(self.total_bytes / MB, 2),
            "max_storage": self.max_bytes,
            "max_storage_mb": round(self.max_bytes / MB, 2),
            "usage_fraction": self.usage_fraction,
            "usage_percent": round(self.usage_percent, 2),
            "file_count": self.file_count,
            "available": self.available_bytes,
            "available_mb": round(self.available_bytes / MB, 2),
            "status": self.status,
        }


def classify_usage(usage_fraction: float, limits: StorageLimits) -> str:
    """Map a usage fraction to a status, highest threshold first."""
    if usage_fraction >= limits.critical_fraction:
        return STATUS_CRITICAL
    if usage_fraction >= limits.cleanup_fraction:
        return STATUS_HIGH
    if usage_fraction >= limits.warning_fraction:
        return STATUS_WARNING
    return STATUS_NORMAL


class UsageAccountant:
    def __init__(self, blob_store: BlobStore, limits: StorageLimits):
        self.blob_store = blob_store
        self.limits = limits

    async def compute_usage(self) -> UsageSnapshot:
        """Sum every blob's length. Raises StoreUnavailable if enumeration fails."""
        blobs = await self.blob_store.list_all()
        total = sum(b.length for b in blobs)
        fraction = total / self.limits.max_bytes
        return UsageSnapshot(
            total_bytes=total,
            file_count=len(blobs),
            max_bytes=self.limits.max_bytes,
            usage_fraction=fraction,
            status=classify_usage(fraction, self.limits),
        )

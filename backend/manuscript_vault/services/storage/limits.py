"""Storage quota limits.

Built once from Settings at startup and injected into every quota
component. Frozen: nothing mutates limits after process start.
"""
from dataclasses import dataclass
from datetime import timedelta

from manuscript_vault.config import Settings, settings


@dataclass(frozen=True)
class StorageLimits:
    max_bytes: int = 512 * 1024 * 1024
    warning_fraction: float = 0.85
    cleanup_fraction: float = 0.90
    critical_fraction: float = 0.95
    target_after_cleanup_fraction: float = 0.70
    stale_after_days: int = 30
    cleanup_batch_size: int = 100

    def __post_init__(self):
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if not (0 < self.warning_fraction < self.cleanup_fraction < self.critical_fraction < 1):
            raise ValueError(
                "Thresholds must satisfy 0 < warning < cleanup < critical < 1, got "
                f"{self.warning_fraction}/{self.cleanup_fraction}/{self.critical_fraction}"
            )
        if not (0 < self.target_after_cleanup_fraction < self.cleanup_fraction):
            raise ValueError("target_after_cleanup_fraction must be between 0 and cleanup_fraction")
        if self.stale_after_days <= 0:
            raise ValueError("stale_after_days must be positive")
        if self.cleanup_batch_size <= 0:
            raise ValueError("cleanup_batch_size must be positive")

    @property
    def stale_after(self) -> timedelta:
        return timedelta(days=self.stale_after_days)

    @classmethod
    def from_settings(cls, config: Settings) -> "StorageLimits":
        return cls(
            max_bytes=config.STORAGE_MAX_BYTES,
            warning_fraction=config.STORAGE_WARNING_THRESHOLD,
            cleanup_fraction=config.STORAGE_CLEANUP_THRESHOLD,
            critical_fraction=config.STORAGE_CRITICAL_THRESHOLD,
            target_after_cleanup_fraction=config.STORAGE_TARGET_AFTER_CLEANUP,
            stale_after_days=config.STORAGE_STALE_AFTER_DAYS,
            cleanup_batch_size=config.STORAGE_CLEANUP_BATCH_SIZE,
        )


storage_limits = StorageLimits.from_settings(settings)


def get_storage_limits() -> StorageLimits:
    """FastAPI dependency returning the process-wide limits."""
    return storage_limits

"""Domain exceptions shared by the blob stores, the quota engine and the routes."""


class StorageError(Exception):
    """Base class for blob store and quota errors."""
    pass


class StoreUnavailable(StorageError):
    """The blob store or record store could not be reached or enumerated."""
    pass


class BlobNotFound(StorageError):
    """No blob exists under the given id."""

    def __init__(self, blob_id: str):
        super().__init__(f"Blob not found: {blob_id}")
        self.blob_id = blob_id


class BlobDeleteFailed(StorageError):
    """An individual blob could not be deleted."""

    def __init__(self, blob_id: str, cause: Exception | None = None):
        super().__init__(f"Failed to delete blob {blob_id}: {cause}")
        self.blob_id = blob_id
        self.cause = cause


class RecordNotFound(StorageError):
    """Referenced file record id is absent."""

    def __init__(self, record_id):
        super().__init__("File not found")
        self.record_id = record_id


class AdmissionDenied(StorageError):
    """Upload refused by the admission controller."""
    code = "ADMISSION_DENIED"


class QuotaCritical(AdmissionDenied):
    code = "QUOTA_CRITICAL"

    def __init__(self):
        super().__init__("Storage quota critical. Please delete old files or contact administrator.")


class InsufficientCapacity(AdmissionDenied):
    code = "INSUFFICIENT_CAPACITY"

    def __init__(self):
        super().__init__("File size exceeds available storage. Please delete old files first.")


class ConversionError(Exception):
    """The converter could not produce outputs for a record."""
    pass

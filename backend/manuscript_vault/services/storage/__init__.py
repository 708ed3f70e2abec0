"""Blob store quota monitoring and space reclamation."""
from manuscript_vault.services.storage.limits import StorageLimits
from manuscript_vault.services.storage.usage import UsageAccountant, UsageSnapshot
from manuscript_vault.services.storage.admission import AdmissionController, AdmissionDecision
from manuscript_vault.services.storage.records import delete_record_completely, RecordDeletion
from manuscript_vault.services.storage.reclamation import ReclamationEngine, ReclaimResult
from manuscript_vault.services.storage.orphans import OrphanScanner, OrphanScanResult

__all__ = [
    "StorageLimits",
    "UsageAccountant", "UsageSnapshot",
    "AdmissionController", "AdmissionDecision",
    "delete_record_completely", "RecordDeletion",
    "ReclamationEngine", "ReclaimResult",
    "OrphanScanner", "OrphanScanResult",
]

"""Upload admission against the blob store quota.

The decision is advisory at call time: nothing is reserved, so two
concurrent uploads can both be admitted when only one fits.
"""
import logging
from dataclasses import dataclass

from manuscript_vault.exceptions import AdmissionDenied, InsufficientCapacity, QuotaCritical, StoreUnavailable
from manuscript_vault.services.storage.usage import UsageAccountant, UsageSnapshot

logger = logging.getLogger(__name__)


@dataclass
class AdmissionDecision:
    allow: bool
    should_cleanup: bool = False
    reason: str | None = None
    snapshot: UsageSnapshot | None = None
    denial: AdmissionDenied | None = None
    error: str | None = None


class AdmissionController:
    def __init__(self, accountant: UsageAccountant):
        self.accountant = accountant
        self.limits = accountant.limits

    async def check_admission(self, candidate_bytes: int) -> AdmissionDecision:
        """Decide whether an upload of `candidate_bytes` may proceed.

        Order matters: the critical threshold refuses even a tiny upload,
        before the projected-size check is considered. If usage cannot be
        computed the upload is allowed (fail open) and the error attached.
        """
        try:
            snapshot = await self.accountant.compute_usage()
        except StoreUnavailable as e:
            logger.warning(f"Storage usage unavailable, admitting upload of {candidate_bytes} bytes: {e}")
            return AdmissionDecision(allow=True, should_cleanup=False, error=str(e))

        if snapshot.usage_fraction >= self.limits.critical_fraction:
            denial = QuotaCritical()
            return AdmissionDecision(allow=False, reason=str(denial), snapshot=snapshot, denial=denial)

        projected = (snapshot.total_bytes + candidate_bytes) / self.limits.max_bytes
        if projected > 1.0:
            denial = InsufficientCapacity()
            return AdmissionDecision(allow=False, reason=str(denial), snapshot=snapshot, denial=denial)

        if snapshot.usage_fraction >= self.limits.cleanup_fraction:
            return AdmissionDecision(
                allow=True,
                should_cleanup=True,
                reason="Storage is high. Automatic cleanup recommended.",
                snapshot=snapshot,
            )

        return AdmissionDecision(allow=True, snapshot=snapshot)

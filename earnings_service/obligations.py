"""
Amounts a group already owes its drivers and vendors.

Read-only and advisory: the totals are shown to a payout requester next to
their balance, they never cap a payout and are never used as a lock.
"""
import logging
import warnings
from dataclasses import dataclass, field
from typing import List

from common.error_handling import DataIntegrityWarning, ValidationError
from earnings_service.models import ObligationKind, ObligationStatus
from earnings_service.repository import EarningsRepository
from earnings_service.verification import OwnershipVerifier, STAFF_ROLE, VerificationReason

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (ObligationStatus.PENDING.value, ObligationStatus.APPROVED.value)

@dataclass
class ObligationSummary:
    group_id: str
    kind: str
    total: int = 0
    counted: int = 0
    excluded: int = 0
    flagged_for_review: List[str] = field(default_factory=list)

@dataclass(frozen=True)
class Breakdown:
    sales_revenue: int
    owed_to_drivers: int
    owed_to_vendors: int

class ObligationAggregator:
    def __init__(self, repo: EarningsRepository, verifier: OwnershipVerifier = None):
        self.repo = repo
        self.verifier = verifier or OwnershipVerifier(repo)

    def sum_obligations(self, group_id: str, kind: str) -> int:
        return self.summarize(group_id, kind).total

    def summarize(self, group_id: str, kind: str) -> ObligationSummary:
        try:
            kind = ObligationKind(kind).value
        except ValueError:
            raise ValidationError(f"Unknown obligation kind {kind!r}", field="kind")
        summary = ObligationSummary(group_id=group_id, kind=kind)

        records = self.repo.obligations_for_group(group_id, kind, OUTSTANDING_STATUSES)
        results = self.verifier.verify_many(
            (r.payee_id for r in records), STAFF_ROLE, expected_sub_role=kind, expected_group_id=group_id)

        for record in records:
            result = results[record.payee_id]
            if not result.verified:
                summary.excluded += 1
                if result.reason == VerificationReason.PROFILE_NOT_FOUND:
                    message = f"{kind} obligation {record.id} in group {group_id} references unknown payee {record.payee_id}"
                    warnings.warn(message, DataIntegrityWarning, stacklevel=2)
                    logger.warning(message, extra={"obligation_id": record.id, "payee_id": record.payee_id})
                else:
                    logger.info(f"Excluded {kind} obligation {record.id}: {result.reason}")
                continue
            summary.total += record.amount
            summary.counted += 1
            if result.needs_review:
                summary.flagged_for_review.append(record.id)

        return summary

    def breakdown(self, group_id: str, payout_amount: int) -> Breakdown:
        """Split a payout into what is owed to drivers, vendors, and what remains as sales revenue."""
        drivers = self.sum_obligations(group_id, ObligationKind.DRIVER.value)
        vendors = self.sum_obligations(group_id, ObligationKind.VENDOR.value)
        return Breakdown(
            sales_revenue=max(payout_amount - drivers - vendors, 0),
            owed_to_drivers=drivers,
            owed_to_vendors=vendors,
        )

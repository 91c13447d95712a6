"""
Payee verification against the independent role/profile records.

An obligation only counts against a group when the claimed payee's profile
confirms the expected role. Sub-role rules:

* sub-role present and matching  -> verified
* sub-role present but different -> excluded
* sub-role absent (legacy data)  -> verified, flagged for manual review
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from earnings_service.models import PayeeProfile
from earnings_service.repository import EarningsRepository

logger = logging.getLogger(__name__)

STAFF_ROLE = "dispensary-staff"

class VerificationReason:
    VERIFIED = "verified"
    SUB_ROLE_MISSING = "sub_role_missing"
    SUB_ROLE_MISMATCH = "sub_role_mismatch"
    ROLE_MISMATCH = "role_mismatch"
    GROUP_MISMATCH = "group_mismatch"
    PROFILE_NOT_FOUND = "profile_not_found"

@dataclass(frozen=True)
class VerificationResult:
    payee_id: str
    verified: bool
    reason: str
    needs_review: bool = False

class OwnershipVerifier:
    def __init__(self, repo: EarningsRepository):
        self.repo = repo

    def verify_payee(
        self,
        claimed_payee_id: str,
        expected_role: str,
        expected_sub_role: Optional[str] = None,
        expected_group_id: Optional[str] = None,
    ) -> VerificationResult:
        profile = self.repo.get_profile(claimed_payee_id)
        return self.check(claimed_payee_id, profile, expected_role, expected_sub_role, expected_group_id)

    def verify_many(
        self,
        claimed_payee_ids: Iterable[str],
        expected_role: str,
        expected_sub_role: Optional[str] = None,
        expected_group_id: Optional[str] = None,
    ) -> Dict[str, VerificationResult]:
        """Verify several payees with one profile lookup."""
        ids = list(claimed_payee_ids)
        profiles = self.repo.profiles_by_ids(ids)
        return {
            payee_id: self.check(payee_id, profiles.get(payee_id), expected_role, expected_sub_role, expected_group_id)
            for payee_id in ids
        }

    @staticmethod
    def check(
        payee_id: str,
        profile: Optional[PayeeProfile],
        expected_role: str,
        expected_sub_role: Optional[str] = None,
        expected_group_id: Optional[str] = None,
    ) -> VerificationResult:
        if profile is None:
            return VerificationResult(payee_id, False, VerificationReason.PROFILE_NOT_FOUND)

        if profile.role != expected_role:
            return VerificationResult(payee_id, False, VerificationReason.ROLE_MISMATCH)

        if expected_group_id is not None and profile.group_id and profile.group_id != expected_group_id:
            return VerificationResult(payee_id, False, VerificationReason.GROUP_MISMATCH)

        if expected_sub_role is not None:
            if not profile.sub_role:
                logger.warning(f"Payee {payee_id} has no sub-role on record; counting as {expected_sub_role} pending review")
                return VerificationResult(payee_id, True, VerificationReason.SUB_ROLE_MISSING, needs_review=True)
            if profile.sub_role.lower() != expected_sub_role.lower():
                return VerificationResult(payee_id, False, VerificationReason.SUB_ROLE_MISMATCH)

        return VerificationResult(payee_id, True, VerificationReason.VERIFIED)

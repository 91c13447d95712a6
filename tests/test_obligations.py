import unittest

from common.error_handling import DataIntegrityWarning, ValidationError
from earnings_service.ledger import LedgerEngine
from earnings_service.models import PayeeProfile
from earnings_service.obligations import ObligationAggregator
from earnings_service.verification import OwnershipVerifier, STAFF_ROLE, VerificationReason
from tests.support import GROUP, OTHER_GROUP, make_session_factory, seed_obligation, seed_profile


class TestVerifierPolicy(unittest.TestCase):
    """Role and sub-role checks against a payee profile"""

    def profile(self, role=STAFF_ROLE, sub_role="driver", group_id=GROUP):
        return PayeeProfile(user_id="u1", role=role, sub_role=sub_role, group_id=group_id)

    def test_matching_role_and_sub_role(self):
        result = OwnershipVerifier.check("u1", self.profile(), STAFF_ROLE, "driver")
        self.assertTrue(result.verified)
        self.assertFalse(result.needs_review)
        self.assertEqual(result.reason, VerificationReason.VERIFIED)

    def test_sub_role_comparison_ignores_case(self):
        result = OwnershipVerifier.check("u1", self.profile(sub_role="Driver"), STAFF_ROLE, "driver")
        self.assertTrue(result.verified)

    def test_role_mismatch_is_excluded(self):
        """An independent contractor never counts against a staff-managed group"""
        result = OwnershipVerifier.check("u1", self.profile(role="public-driver"), STAFF_ROLE, "driver")
        self.assertFalse(result.verified)
        self.assertEqual(result.reason, VerificationReason.ROLE_MISMATCH)

    def test_missing_sub_role_counts_and_is_flagged(self):
        with self.assertLogs("earnings_service.verification", level="WARNING"):
            result = OwnershipVerifier.check("u1", self.profile(sub_role=None), STAFF_ROLE, "driver")
        self.assertTrue(result.verified)
        self.assertTrue(result.needs_review)
        self.assertEqual(result.reason, VerificationReason.SUB_ROLE_MISSING)

    def test_sub_role_mismatch_is_excluded(self):
        result = OwnershipVerifier.check("u1", self.profile(sub_role="vendor"), STAFF_ROLE, "driver")
        self.assertFalse(result.verified)
        self.assertEqual(result.reason, VerificationReason.SUB_ROLE_MISMATCH)

    def test_missing_profile_is_excluded(self):
        result = OwnershipVerifier.check("u1", None, STAFF_ROLE, "driver")
        self.assertFalse(result.verified)
        self.assertEqual(result.reason, VerificationReason.PROFILE_NOT_FOUND)

    def test_other_group_is_excluded(self):
        result = OwnershipVerifier.check("u1", self.profile(group_id=OTHER_GROUP), STAFF_ROLE, "driver",
                                         expected_group_id=GROUP)
        self.assertFalse(result.verified)
        self.assertEqual(result.reason, VerificationReason.GROUP_MISMATCH)

    def test_no_sub_role_expected(self):
        result = OwnershipVerifier.check("u1", self.profile(sub_role=None), STAFF_ROLE)
        self.assertTrue(result.verified)
        self.assertFalse(result.needs_review)


class TestObligationAggregator(unittest.TestCase):

    def setUp(self):
        self.session_factory = make_session_factory()
        self.engine = LedgerEngine(self.session_factory)

    def summarize(self, kind, group_id=GROUP):
        with self.engine.transaction() as repo:
            return ObligationAggregator(repo).summarize(group_id, kind)

    def test_only_outstanding_obligations_are_summed(self):
        """R100 pending + R50 approved count; R75 already paid does not"""
        seed_profile(self.session_factory, "d1", sub_role="driver")
        seed_obligation(self.session_factory, "ob-1", "d1", "driver", 10000, status="pending")
        seed_obligation(self.session_factory, "ob-2", "d1", "driver", 5000, status="approved")
        seed_obligation(self.session_factory, "ob-3", "d1", "driver", 7500, status="paid")

        summary = self.summarize("driver")

        self.assertEqual(summary.total, 15000)
        self.assertEqual(summary.counted, 2)
        self.assertEqual(summary.excluded, 0)

    def test_kinds_and_groups_are_kept_apart(self):
        seed_profile(self.session_factory, "d1", sub_role="driver")
        seed_profile(self.session_factory, "v1", sub_role="vendor")
        seed_obligation(self.session_factory, "ob-1", "d1", "driver", 10000)
        seed_obligation(self.session_factory, "ob-2", "v1", "vendor", 2500)
        seed_obligation(self.session_factory, "ob-3", "d1", "driver", 9900, group_id=OTHER_GROUP)

        with self.engine.transaction() as repo:
            aggregator = ObligationAggregator(repo)
            self.assertEqual(aggregator.sum_obligations(GROUP, "driver"), 10000)
            self.assertEqual(aggregator.sum_obligations(GROUP, "vendor"), 2500)

    def test_unverified_payees_are_excluded(self):
        seed_profile(self.session_factory, "d1", sub_role="driver")
        seed_profile(self.session_factory, "pub", role="public-driver", sub_role="driver")
        seed_profile(self.session_factory, "v1", sub_role="vendor")
        seed_obligation(self.session_factory, "ob-1", "d1", "driver", 10000)
        seed_obligation(self.session_factory, "ob-2", "pub", "driver", 5000)
        seed_obligation(self.session_factory, "ob-3", "v1", "driver", 7000)

        summary = self.summarize("driver")

        self.assertEqual(summary.total, 10000)
        self.assertEqual(summary.counted, 1)
        self.assertEqual(summary.excluded, 2)

    def test_legacy_profile_is_counted_and_flagged(self):
        seed_profile(self.session_factory, "legacy", sub_role=None)
        seed_obligation(self.session_factory, "ob-1", "legacy", "driver", 4000)

        summary = self.summarize("driver")

        self.assertEqual(summary.total, 4000)
        self.assertEqual(summary.flagged_for_review, ["ob-1"])

    def test_unknown_payee_warns_and_is_excluded(self):
        seed_obligation(self.session_factory, "ob-1", "ghost", "vendor", 4000)

        with self.assertWarns(DataIntegrityWarning):
            summary = self.summarize("vendor")

        self.assertEqual(summary.total, 0)
        self.assertEqual(summary.excluded, 1)

    def test_unknown_kind(self):
        with self.assertRaises(ValidationError):
            self.summarize("courier")

    def test_breakdown_is_advisory(self):
        """Obligations above the payout leave zero sales revenue rather than failing"""
        seed_profile(self.session_factory, "d1", sub_role="driver")
        seed_profile(self.session_factory, "v1", sub_role="vendor")
        seed_obligation(self.session_factory, "ob-1", "d1", "driver", 30000)
        seed_obligation(self.session_factory, "ob-2", "v1", "vendor", 10000)

        with self.engine.transaction() as repo:
            aggregator = ObligationAggregator(repo)
            within = aggregator.breakdown(GROUP, 50000)
            beyond = aggregator.breakdown(GROUP, 20000)

        self.assertEqual((within.sales_revenue, within.owed_to_drivers, within.owed_to_vendors),
                         (10000, 30000, 10000))
        self.assertEqual(beyond.sales_revenue, 0)


if __name__ == "__main__":
    unittest.main()

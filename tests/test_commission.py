import unittest
from decimal import Decimal

from common.error_handling import InvalidRateError, ValidationError
from earnings_service.commission import compute_commission, resolve_commission
from earnings_service.money import format_amount, from_cents, to_cents


class TestComputeCommission(unittest.TestCase):

    def test_fifteen_percent_of_whole_amount(self):
        self.assertEqual(compute_commission(100000, Decimal("0.15")), 15000)

    def test_rounds_half_up_to_the_cent(self):
        """R33.33 at 15% is 499.95 cents, which rounds up to R5.00"""
        self.assertEqual(compute_commission(3333, Decimal("0.15")), 500)
        # 1.5 cents -> 2 cents
        self.assertEqual(compute_commission(10, Decimal("0.15")), 2)
        # 0.45 cents -> 0 cents
        self.assertEqual(compute_commission(3, Decimal("0.15")), 0)

    def test_accepts_string_and_float_rates(self):
        self.assertEqual(compute_commission(20000, "0.1"), 2000)
        self.assertEqual(compute_commission(20000, 0.25), 5000)

    def test_full_rate_is_allowed(self):
        self.assertEqual(compute_commission(1234, 1), 1234)

    def test_rejects_rates_outside_range(self):
        for rate in (0, Decimal("-0.1"), Decimal("1.01"), "abc", float("nan")):
            with self.subTest(rate=rate):
                with self.assertRaises(InvalidRateError):
                    compute_commission(10000, rate)

    def test_invalid_rate_is_a_validation_error(self):
        with self.assertRaises(ValidationError):
            compute_commission(10000, 2)


class TestResolveCommission(unittest.TestCase):

    def test_pre_computed_amount_wins_over_rate(self):
        self.assertEqual(resolve_commission(100000, pre_computed_cents=12345, rate=Decimal("0.15")), 12345)

    def test_pre_computed_amount_skips_rate_validation(self):
        self.assertEqual(resolve_commission(100000, pre_computed_cents=500, rate=Decimal("5")), 500)

    def test_explicit_rate(self):
        self.assertEqual(resolve_commission(100000, rate=Decimal("0.20")), 20000)

    def test_default_rate(self):
        self.assertEqual(resolve_commission(100000), 15000)


class TestMoney(unittest.TestCase):

    def test_to_cents_is_exact(self):
        self.assertEqual(to_cents(Decimal("1000.00")), 100000)
        self.assertEqual(to_cents("0.1"), 10)
        self.assertEqual(to_cents(450), 45000)

    def test_to_cents_rejects_sub_cent_amounts(self):
        with self.assertRaises(ValidationError):
            to_cents(Decimal("10.005"))

    def test_to_cents_rejects_amounts_too_large_for_cents(self):
        with self.assertRaises(ValidationError) as ctx:
            to_cents(Decimal("1e30"), "order_total")
        self.assertEqual(ctx.exception.field, "order_total")

    def test_to_cents_rejects_garbage(self):
        for value in ("ten", "NaN", "Infinity"):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    to_cents(value)

    def test_from_cents_and_format(self):
        self.assertEqual(from_cents(50000), Decimal("500.00"))
        self.assertEqual(from_cents(-5), Decimal("-0.05"))
        self.assertEqual(format_amount(45000), "R450.00")


if __name__ == "__main__":
    unittest.main()

# File: tests/unit/test_pricing.py
"""
Unit tests for tiered billing: strategies, rate table and the calculator
"""

import unittest
from decimal import Decimal

from pydantic import ValidationError

from parktrack.domain.models import Charge, SubscriptionTier
from parktrack.domain.pricing import (
    BillingCalculator, FreeHourPricingStrategy, RateConfiguration,
    RoundUpPricingStrategy, TierPricing
)


class TestPricingStrategies(unittest.TestCase):
    """Chargeable hour rules per strategy"""

    def test_round_up_bills_every_started_hour(self):
        strategy = RoundUpPricingStrategy()
        cases = {0: 1, 1: 1, 59: 1, 60: 1, 61: 2, 120: 2, 150: 3}
        for minutes, hours in cases.items():
            with self.subTest(minutes=minutes):
                self.assertEqual(strategy.chargeable_hours(minutes), hours)

    def test_free_hour_bills_completed_hours_only(self):
        strategy = FreeHourPricingStrategy()
        cases = {0: 0, 60: 0, 61: 0, 119: 0, 120: 1, 150: 1, 179: 1, 180: 2}
        for minutes, hours in cases.items():
            with self.subTest(minutes=minutes):
                self.assertEqual(strategy.chargeable_hours(minutes, free_hours=1), hours)

    def test_strategy_name(self):
        self.assertEqual(str(RoundUpPricingStrategy()), "RoundUp Strategy")


class TestBillingCalculator(unittest.TestCase):
    """Charges per tier with default and overridden rates"""

    def setUp(self):
        self.calculator = BillingCalculator()

    def test_normal_tier_minimum_one_hour(self):
        self.assertEqual(self.calculator.compute_charge(0, SubscriptionTier.NORMAL), Decimal("100.00"))
        self.assertEqual(self.calculator.compute_charge(1, SubscriptionTier.NORMAL), Decimal("100.00"))

    def test_normal_tier_rounds_up(self):
        self.assertEqual(self.calculator.compute_charge(61, SubscriptionTier.NORMAL), Decimal("200.00"))
        self.assertEqual(self.calculator.compute_charge(150, SubscriptionTier.NORMAL), Decimal("300.00"))

    def test_gold_first_hour_free(self):
        self.assertEqual(self.calculator.compute_charge(60, SubscriptionTier.GOLD), Decimal("0.00"))
        self.assertEqual(self.calculator.compute_charge(119, SubscriptionTier.GOLD), Decimal("0.00"))

    def test_gold_partial_hours_not_billed(self):
        self.assertEqual(self.calculator.compute_charge(150, SubscriptionTier.GOLD), Decimal("80.00"))
        self.assertEqual(self.calculator.compute_charge(180, SubscriptionTier.GOLD), Decimal("160.00"))

    def test_platinum_rate(self):
        self.assertEqual(self.calculator.compute_charge(150, SubscriptionTier.PLATINUM), Decimal("60.00"))
        self.assertEqual(self.calculator.compute_charge(30, SubscriptionTier.PLATINUM), Decimal("0.00"))

    def test_positive_override_replaces_default_rate(self):
        rates = RateConfiguration(gold_rate=90.0)
        self.assertEqual(self.calculator.compute_charge(150, SubscriptionTier.GOLD, rates), Decimal("90.00"))
        # Other tiers keep their defaults
        self.assertEqual(self.calculator.compute_charge(61, SubscriptionTier.NORMAL, rates), Decimal("200.00"))

    def test_non_positive_override_falls_back_to_default(self):
        rates = RateConfiguration(normal_rate=-5.0, platinum_rate=0.0)
        self.assertEqual(self.calculator.compute_charge(10, SubscriptionTier.NORMAL, rates), Decimal("100.00"))
        self.assertEqual(self.calculator.compute_charge(150, SubscriptionTier.PLATINUM, rates), Decimal("60.00"))

    def test_fractional_rate_rounded_to_cents(self):
        rates = RateConfiguration(normal_rate=33.335)
        self.assertEqual(self.calculator.compute_charge(30, SubscriptionTier.NORMAL, rates), Decimal("33.34"))

    def test_negative_duration_rejected(self):
        with self.assertRaises(ValueError):
            self.calculator.compute_charge(-1, SubscriptionTier.NORMAL)

    def test_deterministic(self):
        first = self.calculator.compute_charge(245, SubscriptionTier.GOLD)
        second = self.calculator.compute_charge(245, SubscriptionTier.GOLD)
        self.assertEqual(first, second)

    def test_build_charge_keeps_audit_detail(self):
        charge = self.calculator.build_charge(150, SubscriptionTier.GOLD)

        self.assertIsInstance(charge, Charge)
        self.assertEqual(charge.amount, Decimal("80.00"))
        self.assertEqual(charge.duration_minutes, 150)
        self.assertEqual(charge.chargeable_hours, 1)
        self.assertEqual(charge.hourly_rate, Decimal("80.00"))
        self.assertTrue(charge.free_hours_applied)
        self.assertEqual(charge.format(), "Rs 80.00")

    def test_build_charge_normal_has_no_free_hours(self):
        charge = self.calculator.build_charge(5, SubscriptionTier.NORMAL)
        self.assertFalse(charge.free_hours_applied)
        self.assertEqual(charge.to_dict()["tier"], "normal")
        self.assertEqual(charge.to_dict()["amount"], 100.0)


class TestTierPricing(unittest.TestCase):
    """Display helpers and the rate configuration record"""

    def test_display_names(self):
        self.assertEqual(TierPricing.display_name(SubscriptionTier.NORMAL), "Normal")
        self.assertEqual(TierPricing.display_name(SubscriptionTier.GOLD), "Gold Member")
        self.assertEqual(TierPricing.display_name(SubscriptionTier.PLATINUM), "Platinum Member")

    def test_fee_descriptions(self):
        self.assertEqual(
            TierPricing.fee_description(SubscriptionTier.NORMAL),
            "Rs 100 minimum charge on exit (even for 1 minute)"
        )
        self.assertEqual(
            TierPricing.fee_description(SubscriptionTier.GOLD),
            "First hour FREE, then Rs 80/hour for completed hours only"
        )

    def test_free_hours(self):
        self.assertEqual(TierPricing.free_hours(SubscriptionTier.NORMAL), 0)
        self.assertEqual(TierPricing.free_hours(SubscriptionTier.PLATINUM), 1)

    def test_rate_configuration_defaults(self):
        rates = RateConfiguration()
        self.assertEqual(rates.vip_multiplier, 1.5)
        self.assertEqual(rates.overnight_start_hour, 22)
        self.assertEqual(rates.overnight_end_hour, 6)
        self.assertEqual(rates.rate_for(SubscriptionTier.NORMAL), Decimal("100.00"))

    def test_rate_configuration_validates_window(self):
        with self.assertRaises(ValidationError):
            RateConfiguration(overnight_start_hour=24)

    def test_rate_configuration_is_frozen(self):
        rates = RateConfiguration()
        with self.assertRaises(ValidationError):
            rates.gold_rate = 10.0


if __name__ == '__main__':
    unittest.main()

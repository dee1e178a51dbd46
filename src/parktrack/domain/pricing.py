# File: src/parktrack/domain/pricing.py
"""
Strategy Pattern Implementation for tiered parking billing

Each subscription tier maps to a pricing strategy that turns a final session
duration into a charge. The calculator is pure: the rate table in effect when
the session closed is passed in explicitly, so an auditor holding the duration,
the tier and that table can always re-derive the same amount.

Strategies:
1. RoundUpPricingStrategy - every started hour is billed, minimum one hour
2. FreeHourPricingStrategy - free allowance, then only completed hours are billed
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Tuple
from decimal import Decimal, ROUND_HALF_UP
import logging

from pydantic import BaseModel, ConfigDict, Field

from .models import Charge, SubscriptionTier


MINUTES_PER_HOUR = 60
CENTS = Decimal("0.01")


class TierPricing:
    """Fixed default rate table (per hour) and free-hour policy"""

    NORMAL_HOURLY_RATE = Decimal("100.00")
    GOLD_HOURLY_RATE = Decimal("80.00")
    PLATINUM_HOURLY_RATE = Decimal("60.00")
    FREE_HOURS_GOLD_PLATINUM = 1

    DEFAULT_RATES: Dict[SubscriptionTier, Decimal] = {
        SubscriptionTier.NORMAL: NORMAL_HOURLY_RATE,
        SubscriptionTier.GOLD: GOLD_HOURLY_RATE,
        SubscriptionTier.PLATINUM: PLATINUM_HOURLY_RATE,
    }

    @classmethod
    def default_rate(cls, tier: SubscriptionTier) -> Decimal:
        return cls.DEFAULT_RATES[tier]

    @classmethod
    def free_hours(cls, tier: SubscriptionTier) -> int:
        return cls.FREE_HOURS_GOLD_PLATINUM if tier.has_free_hour else 0

    @staticmethod
    def display_name(tier: SubscriptionTier) -> str:
        names = {
            SubscriptionTier.NORMAL: "Normal",
            SubscriptionTier.GOLD: "Gold Member",
            SubscriptionTier.PLATINUM: "Platinum Member",
        }
        return names[tier]

    @classmethod
    def fee_description(cls, tier: SubscriptionTier, rates: Optional["RateConfiguration"] = None) -> str:
        """Operator-facing summary of how this tier is billed on exit"""
        rate = (rates or RateConfiguration()).rate_for(tier)
        if tier.has_free_hour:
            return f"First hour FREE, then Rs {rate:.0f}/hour for completed hours only"
        return f"Rs {rate:.0f} minimum charge on exit (even for 1 minute)"


class RateConfiguration(BaseModel):
    """
    Rate table supplied by the operator

    Tier rates override the defaults only when positive. The VIP, overnight and
    daily cap fields are carried for the rate-configuration record but are not
    applied by the tier engine.
    """

    model_config = ConfigDict(frozen=True)

    normal_rate: float = 0.0
    gold_rate: float = 0.0
    platinum_rate: float = 0.0
    vip_multiplier: float = Field(default=1.5, ge=0)
    overnight_rate: float = Field(default=0.0, ge=0)
    overnight_start_hour: int = Field(default=22, ge=0, le=23)
    overnight_end_hour: int = Field(default=6, ge=0, le=23)
    max_daily_price: float = Field(default=0.0, ge=0)

    def rate_for(self, tier: SubscriptionTier) -> Decimal:
        overrides = {
            SubscriptionTier.NORMAL: self.normal_rate,
            SubscriptionTier.GOLD: self.gold_rate,
            SubscriptionTier.PLATINUM: self.platinum_rate,
        }
        override = overrides[tier]
        if override and override > 0:
            return Decimal(str(override))
        return TierPricing.default_rate(tier)


# ============================================================================
# STRATEGY INTERFACE
# ============================================================================

class PricingStrategy(ABC):
    """
    Abstract base class for tier pricing strategies
    Maps a duration to the number of billable hours
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def chargeable_hours(self, duration_minutes: int, free_hours: int) -> int:
        """Returns: whole hours to bill for duration_minutes"""
        pass

    def get_strategy_name(self) -> str:
        return self.__class__.__name__.replace("PricingStrategy", "")

    def __str__(self) -> str:
        return f"{self.get_strategy_name()} Strategy"


# ============================================================================
# PRICING STRATEGIES
# ============================================================================

class RoundUpPricingStrategy(PricingStrategy):
    """
    Strategy: pay for every started hour
    - Zero or one minute still costs a full hour
    - 61 minutes is two hours
    """

    def chargeable_hours(self, duration_minutes: int, free_hours: int = 0) -> int:
        if duration_minutes <= 0:
            return 1
        # ceil(duration_minutes / 60) without float rounding
        return -(-duration_minutes // MINUTES_PER_HOUR)


class FreeHourPricingStrategy(PricingStrategy):
    """
    Strategy: free allowance, then completed hours only
    - Anything up to and including the free hours costs nothing
    - Partial hours beyond the allowance are not billed
      (2h30m with one free hour bills floor(1.5) = 1 hour)
    """

    def chargeable_hours(self, duration_minutes: int, free_hours: int = 1) -> int:
        free_minutes = free_hours * MINUTES_PER_HOUR
        if duration_minutes <= free_minutes:
            return 0
        return max(0, (duration_minutes - free_minutes) // MINUTES_PER_HOUR)


# ============================================================================
# CALCULATOR
# ============================================================================

class BillingCalculator:
    """
    Computes the charge for a completed session

    No side effects: the same (duration, tier, rate table) always yields the
    same amount.
    """

    def __init__(self, strategies: Optional[Dict[SubscriptionTier, PricingStrategy]] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        if strategies is None:
            free_hour = FreeHourPricingStrategy()
            strategies = {
                SubscriptionTier.NORMAL: RoundUpPricingStrategy(),
                SubscriptionTier.GOLD: free_hour,
                SubscriptionTier.PLATINUM: free_hour,
            }
        self.strategies = strategies

    def _resolve(
        self,
        duration_minutes: int,
        tier: SubscriptionTier,
        rates: Optional[RateConfiguration]
    ) -> Tuple[Decimal, int, Decimal]:
        if duration_minutes < 0:
            raise ValueError(f"Duration must be non-negative, got {duration_minutes}")

        rate = (rates or RateConfiguration()).rate_for(tier)
        strategy = self.strategies[tier]
        hours = strategy.chargeable_hours(duration_minutes, TierPricing.free_hours(tier))
        amount = (rate * hours).quantize(CENTS, rounding=ROUND_HALF_UP)
        return max(amount, Decimal("0.00")), hours, rate

    def compute_charge(
        self,
        duration_minutes: int,
        tier: SubscriptionTier,
        rates: Optional[RateConfiguration] = None
    ) -> Decimal:
        """Returns: non-negative charge amount for the session"""
        amount, _, _ = self._resolve(duration_minutes, tier, rates)
        return amount

    def build_charge(
        self,
        duration_minutes: int,
        tier: SubscriptionTier,
        rates: Optional[RateConfiguration] = None
    ) -> Charge:
        """Compute the charge and keep the inputs an auditor needs"""
        amount, hours, rate = self._resolve(duration_minutes, tier, rates)
        charge = Charge(
            amount=amount,
            tier=tier,
            duration_minutes=duration_minutes,
            chargeable_hours=hours,
            hourly_rate=rate,
            free_hours_applied=TierPricing.free_hours(tier) > 0,
        )
        self.logger.debug(
            f"Charge {charge.amount} for {duration_minutes} min on {tier.value} "
            f"({hours} h at {rate})"
        )
        return charge

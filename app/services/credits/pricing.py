"""
Pricing calculator for credit operations.

Pure and deterministic: maps an operation and its parameters to an integer
credit cost. Priority and duration are closed sets; anything outside them is
rejected before any balance is read.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.config import settings
from app.services.credits.errors import CreditValidationError

POST_LISTING = "post_listing"
BOOST_LISTING = "boost_listing"
OPERATIONS = (POST_LISTING, BOOST_LISTING)

# priority -> base credits; 5 is the highest placement
BOOST_BASE_PRICES: dict[int, int] = {1: 5, 2: 6, 3: 7, 4: 8, 5: 9}

BOOST_PRIORITY_LABELS: dict[int, str] = {
    1: "Basic",
    2: "Standard",
    3: "Enhanced",
    4: "Premium",
    5: "Ultimate",
}

# durationDays -> multiplier; longer commitments cost less per day
BOOST_DURATION_MULTIPLIERS: dict[int, Decimal] = {
    3: Decimal("1.0"),
    7: Decimal("1.8"),
    10: Decimal("2.3"),
}


@dataclass(frozen=True, slots=True)
class BoostQuote:
    priority: int
    duration_days: int
    base_cost: int
    multiplier: Decimal
    total_cost: int


def post_listing_cost(is_dealer: bool) -> int:
    """Dealers post for free; everyone else pays the flat listing fee."""
    if is_dealer:
        return 0
    return settings.POST_LISTING_COST


def validate_boost_config(priority, duration_days) -> tuple[int, int]:
    """Check a boost selection against the closed priority and duration sets."""
    if priority is None or duration_days is None:
        raise CreditValidationError("Missing boostConfig (priority, durationDays)")

    # bool is an int subclass; True must not pass as priority 1
    if isinstance(priority, bool) or priority not in BOOST_BASE_PRICES:
        raise CreditValidationError("Invalid priority - must be 1-5")

    if isinstance(duration_days, bool) or duration_days not in BOOST_DURATION_MULTIPLIERS:
        raise CreditValidationError("Invalid duration - must be 3, 7, or 10 days")

    return priority, duration_days


def quote_boost(priority, duration_days) -> BoostQuote:
    """
    Price a boost.

    cost = round(base[priority] * multiplier[durationDays]), rounding half up
    so a fractional cost never under-charges (7 * 1.8 = 12.6 -> 13).
    """
    priority, duration_days = validate_boost_config(priority, duration_days)

    base_cost = BOOST_BASE_PRICES[priority]
    multiplier = BOOST_DURATION_MULTIPLIERS[duration_days]
    total = (Decimal(base_cost) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    return BoostQuote(
        priority=priority,
        duration_days=duration_days,
        base_cost=base_cost,
        multiplier=multiplier,
        total_cost=int(total),
    )


def boost_cost_matrix() -> dict[int, dict[int, int]]:
    """Every priority x duration cost, for clients rendering the boost picker."""
    return {
        priority: {
            days: quote_boost(priority, days).total_cost for days in BOOST_DURATION_MULTIPLIERS
        }
        for priority in BOOST_BASE_PRICES
    }

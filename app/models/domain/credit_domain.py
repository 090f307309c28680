from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TransactionType = Literal["deduction", "refund", "purchase", "admin_adjustment"]
BoostAction = Literal["purchased", "expired", "cancelled"]


class Account(BaseModel):
    """Credit-relevant subset of a users row, plus the dealer lookup."""

    id: str
    credit_balance: int
    is_dealer: bool = False
    dealership_id: int | None = None


class Listing(BaseModel):
    """Boost-relevant subset of a cars row."""

    id: int
    user_id: str | None = None
    is_boosted: bool = False
    boost_priority: int | None = None
    boost_end_date: datetime | None = None

    def has_active_boost(self, now: datetime) -> bool:
        """A boost is active while its end date is in the future; expiry is observed lazily."""
        return (
            self.is_boosted
            and self.boost_end_date is not None
            and self.boost_end_date > now
        )


class CreditTransaction(BaseModel):
    """Immutable credit_transactions ledger entry."""

    model_config = ConfigDict(extra="ignore")

    id: int
    user_id: str
    amount: int
    balance_after: int
    transaction_type: TransactionType
    purpose: str
    reference_id: str | None = None
    description: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
    reversal_of: int | None = None
    created_at: datetime | None = None


class BoostHistoryEntry(BaseModel):
    """Append-only boost_history analytics record."""

    car_id: int
    dealership_id: int | None = None
    user_id: str | None = None
    action_type: BoostAction
    boost_priority: int | None = None
    duration_days: int | None = None
    credits_spent: int = 0
    start_date: datetime | None = None
    end_date: datetime | None = None
    notes: str | None = None


class BoostGrant(BaseModel):
    """Result of a successful Idle -> Boosted transition."""

    car_id: int
    priority: int
    start_date: datetime
    end_date: datetime


class ReconciliationEntry(BaseModel):
    """A charge that could not be matched to a granted service or a reversal."""

    kind: Literal["compensation_failed", "missing_boost_history", "outcome_unknown"]
    user_id: str
    amount: int
    transaction_id: int | None = None
    car_id: int | None = None
    request_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

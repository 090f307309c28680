# app/models/api/credit_response.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PostListingResponse(BaseModel):
    """Response for a successful post_listing operation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    charged: int
    balance: int
    message: str


class BoostListingResponse(BaseModel):
    """Response for a successful boost_listing operation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    charged: int
    balance: int
    priority: int
    end_date: datetime = Field(..., alias="endDate")
    message: str
    processing_time_ms: int = Field(..., alias="processingTimeMs")


class PriorityTier(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    priority: int
    label: str
    base_credits: int = Field(..., alias="baseCredits")


class DurationOption(BaseModel):
    days: int
    multiplier: float


class PricingResponse(BaseModel):
    """Response for GET /credit-operations/pricing"""

    model_config = ConfigDict(populate_by_name=True)

    post_listing_cost: int = Field(..., alias="postListingCost")
    priorities: list[PriorityTier]
    durations: list[DurationOption]
    # priority -> durationDays -> credits, keys as strings for JSON
    boost_costs: dict[str, dict[str, int]] = Field(..., alias="boostCosts")

# app/models/api/credit_request.py
from pydantic import BaseModel, ConfigDict, Field, StrictInt


class BoostConfigRequest(BaseModel):
    """Boost tier selection sent with a boost_listing operation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Range checks live in the pricing calculator so they share its error messages
    priority: StrictInt | None = None
    duration_days: StrictInt | None = Field(default=None, alias="durationDays")


class CreditOperationRequest(BaseModel):
    """Request body for POST /credit-operations."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    operation: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    car_id: int | None = Field(default=None, alias="carId")
    boost_config: BoostConfigRequest | None = Field(default=None, alias="boostConfig")

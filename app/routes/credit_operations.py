"""
Credit Operations API Routes
HTTP endpoint for paid listing operations (post_listing, boost_listing) and the
price table clients render before purchase.
"""

import asyncio
import json
import uuid

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.api.credit_request import CreditOperationRequest
from app.models.api.credit_response import DurationOption, PricingResponse, PriorityTier
from app.services.credits.credit_operations_service import credit_operations_service
from app.services.credits.errors import CreditOperationError
from app.services.credits.pricing import (
    BOOST_BASE_PRICES,
    BOOST_DURATION_MULTIPLIERS,
    BOOST_PRIORITY_LABELS,
    boost_cost_matrix,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/credit-operations", tags=["credit-operations"])

# Field-level messages match the ones the pricing calculator raises
_FIELD_ERRORS = {
    "operation": "Invalid operation - must be post_listing or boost_listing",
    "userId": "Missing operation or userId",
    "carId": "Invalid carId",
    "priority": "Invalid priority - must be 1-5",
    "durationDays": "Invalid duration - must be 3, 7, or 10 days",
    "boostConfig": "Missing boostConfig (priority, durationDays)",
}


def _error(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


def _validation_message(exc: ValidationError) -> str:
    for err in exc.errors():
        # Innermost field name decides the message
        for field in reversed(err.get("loc", ())):
            if field in _FIELD_ERRORS:
                return _FIELD_ERRORS[field]
    return "Invalid request body"


@router.post("")
async def credit_operation(request: Request):
    """
    Run a credit operation for a user.

    Errors are returned as JSON bodies with the status of the failure kind;
    the body always says whether the caller was charged.
    """
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(status.HTTP_400_BAD_REQUEST, {"error": "Invalid JSON body"})

    if not isinstance(payload, dict):
        return _error(status.HTTP_400_BAD_REQUEST, {"error": "Request body must be an object"})

    try:
        body = CreditOperationRequest.model_validate(payload)
    except ValidationError as e:
        message = _validation_message(e)
        logger.warning("Invalid credit operation request", error=message, details=e.errors())
        return _error(status.HTTP_400_BAD_REQUEST, {"error": message})

    try:
        # A client hang-up must not cancel a debit that is already in flight
        result = await asyncio.shield(credit_operations_service.execute(body, request_id))

    except CreditOperationError as e:
        if e.status_code >= 500:
            logger.error(
                "Credit operation failed",
                operation=body.operation,
                user_id=body.user_id,
                status_code=e.status_code,
                body=e.to_body(),
            )
        else:
            logger.info(
                "Credit operation rejected",
                operation=body.operation,
                user_id=body.user_id,
                status_code=e.status_code,
                error=e.message,
            )
        return _error(e.status_code, e.to_body())

    except Exception as e:
        logger.error(
            "Credit operation error",
            operation=body.operation,
            user_id=body.user_id,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"error": "Internal server error", "message": str(e)},
        )

    return result.model_dump(by_alias=True, mode="json")


@router.api_route("", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def credit_operation_method_not_allowed():
    return _error(status.HTTP_405_METHOD_NOT_ALLOWED, {"error": "Method not allowed"})


@router.get("/pricing", response_model=PricingResponse, response_model_by_alias=True)
async def get_pricing():
    """Current price table: listing fee, boost tiers, durations and the cost matrix."""
    matrix = boost_cost_matrix()

    return PricingResponse(
        post_listing_cost=settings.POST_LISTING_COST,
        priorities=[
            PriorityTier(
                priority=priority,
                label=BOOST_PRIORITY_LABELS[priority],
                base_credits=base,
            )
            for priority, base in BOOST_BASE_PRICES.items()
        ],
        durations=[
            DurationOption(days=days, multiplier=float(multiplier))
            for days, multiplier in BOOST_DURATION_MULTIPLIERS.items()
        ],
        boost_costs={
            str(priority): {str(days): cost for days, cost in row.items()}
            for priority, row in matrix.items()
        },
    )

"""
Error taxonomy for credit operations.

Every failure the handler can report carries its HTTP status and the JSON body
the client renders. Only CollaboratorWriteError (and its timeout variant) can
occur after money has moved; the others are raised before any write.
"""

from datetime import datetime
from typing import Any


class CreditOperationError(Exception):
    """Base class for failures reported to the caller with a structured body."""

    status_code: int = 500

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.user_id = user_id

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message}


class CreditValidationError(CreditOperationError):
    """Malformed or out-of-range input. Raised before any collaborator is touched."""

    status_code = 400


class AccountNotFoundError(CreditOperationError):
    status_code = 404

    def __init__(self, user_id: str):
        super().__init__("User not found", user_id=user_id)


class ListingNotFoundError(CreditOperationError):
    status_code = 404

    def __init__(self, car_id: int, user_id: str | None = None):
        super().__init__("Listing not found", user_id=user_id)
        self.car_id = car_id


class InsufficientCreditsError(CreditOperationError):
    status_code = 402

    def __init__(self, required: int, available: int, user_id: str | None = None):
        super().__init__("Insufficient credits", user_id=user_id)
        self.required = required
        self.available = available

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "required": self.required, "available": self.available}


class BoostConflictError(CreditOperationError):
    """The listing already carries a boost whose end date is in the future."""

    status_code = 409

    def __init__(
        self,
        car_id: int,
        existing_end_date: datetime | None,
        existing_priority: int | None,
        user_id: str | None = None,
    ):
        super().__init__("Car already has an active boost", user_id=user_id)
        self.car_id = car_id
        self.existing_end_date = existing_end_date
        self.existing_priority = existing_priority

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "existingBoostEndDate": (
                self.existing_end_date.isoformat() if self.existing_end_date else None
            ),
            "existingPriority": self.existing_priority,
        }


class CollaboratorWriteError(CreditOperationError):
    """
    The data store rejected or failed a write.

    ``charged``/``refunded``/``reconciliation_required`` describe where the
    caller's money ended up so the client never has to guess.
    """

    status_code = 502
    error_label = "Data store write failed"

    def __init__(
        self,
        message: str,
        step: str,
        user_id: str | None = None,
        charged: bool = False,
        refunded: bool = False,
        reconciliation_required: bool = False,
    ):
        super().__init__(message, user_id=user_id)
        self.step = step
        self.charged = charged
        self.refunded = refunded
        self.reconciliation_required = reconciliation_required

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.error_label,
            "message": self.message,
            "step": self.step,
            "charged": self.charged,
            "refunded": self.refunded,
            "reconciliationRequired": self.reconciliation_required,
        }


class OperationTimeoutError(CollaboratorWriteError):
    """The overall request deadline expired before the operation completed."""

    status_code = 504
    error_label = "Operation timed out"

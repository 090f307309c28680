"""
Balance ledger: debits an account and, when a later step fails, credits it back.
"""

import asyncio
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.audit import reconciliation_logger
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credit_domain import CreditTransaction, ReconciliationEntry
from app.repositories.account_repository import AccountRepository
from app.services.credits.errors import (
    AccountNotFoundError,
    CollaboratorWriteError,
    InsufficientCreditsError,
)

logger = get_logger(__name__)


class BalanceLedger:
    """
    Moves credits and keeps the credit_transactions ledger in step.

    A debit is never retried: a failed debit either did not commit, or it
    committed and is found again by its request id.
    """

    def __init__(
        self,
        repository=AccountRepository,
        reconciliation=reconciliation_logger,
        max_compensation_attempts: int | None = None,
        compensation_base_delay: float | None = None,
    ):
        self.repository = repository
        self.reconciliation = reconciliation
        self.max_compensation_attempts = (
            max_compensation_attempts or settings.COMPENSATION_MAX_ATTEMPTS
        )
        self.compensation_base_delay = (
            settings.COMPENSATION_BASE_DELAY_S
            if compensation_base_delay is None
            else compensation_base_delay
        )

    async def debit(
        self,
        account_id: str,
        amount: int,
        purpose: str,
        reference_id: str | None,
        description: str,
        metadata: dict[str, Any],
        request_id: str,
    ) -> CreditTransaction:
        """
        Debit ``amount`` credits and return the deduction row.

        Raises:
            InsufficientCreditsError: balance below amount; nothing was written
            AccountNotFoundError: account vanished since it was loaded
            CollaboratorWriteError: the write failed and did not commit
        """
        try:
            transaction = await self.repository.debit(
                account_id, amount, purpose, reference_id, description, metadata, request_id
            )
        except DatabaseError as e:
            transaction = await self._recover_debit(account_id, amount, request_id, e)

        if transaction is None:
            available = await self.repository.get_balance(account_id)
            if available is None:
                raise AccountNotFoundError(account_id)
            logger.warning(
                "Insufficient credits",
                user_id=account_id,
                required=amount,
                available=available,
                purpose=purpose,
            )
            raise InsufficientCreditsError(required=amount, available=available, user_id=account_id)

        logger.info(
            "Credits debited",
            user_id=account_id,
            amount=amount,
            balance_after=transaction.balance_after,
            transaction_id=transaction.id,
            purpose=purpose,
        )
        return transaction

    async def find_debit(self, request_id: str) -> CreditTransaction | None:
        return await self.repository.find_debit_by_request(request_id)

    async def credit(
        self,
        account_id: str,
        amount: int,
        *,
        reversal_of: int,
        reference_id: str | None = None,
        reason: str,
        request_id: str | None = None,
    ) -> CreditTransaction | None:
        """
        Compensate a deduction by crediting ``amount`` back.

        Writes a refund row that points at the deduction, so the ledger sum
        keeps matching the balance. Tries a bounded number of times; when all
        attempts fail the charge is queued for reconciliation and None is
        returned.
        """
        last_error: str | None = None

        for attempt in range(1, self.max_compensation_attempts + 1):
            try:
                reversal = await self.repository.reverse_debit(
                    account_id,
                    amount,
                    reversal_of,
                    reference_id,
                    f"Refund of transaction #{reversal_of}: {reason}",
                    {"reason": reason, "request_id": request_id},
                )
                if reversal is not None:
                    logger.info(
                        "Deduction compensated",
                        user_id=account_id,
                        amount=amount,
                        transaction_id=reversal_of,
                        reversal_id=reversal.id,
                        balance_after=reversal.balance_after,
                        attempt=attempt,
                    )
                    return reversal

                # No account row to credit; retrying cannot help
                last_error = "account not found during compensation"
                break

            except DatabaseError as e:
                last_error = str(e)
                if attempt < self.max_compensation_attempts:
                    delay = self.compensation_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Compensation failed, retrying",
                        user_id=account_id,
                        transaction_id=reversal_of,
                        attempt=attempt,
                        max_attempts=self.max_compensation_attempts,
                        delay=delay,
                        error=last_error,
                    )
                    await asyncio.sleep(delay)

        await self.reconciliation.record(
            ReconciliationEntry(
                kind="compensation_failed",
                user_id=account_id,
                amount=amount,
                transaction_id=reversal_of,
                request_id=request_id,
                error=last_error,
                metadata={"reason": reason, "reference_id": reference_id},
            )
        )
        return None

    async def _recover_debit(
        self, account_id: str, amount: int, request_id: str, error: DatabaseError
    ) -> CreditTransaction:
        """
        Resolve a debit whose statement raised.

        The connection may have dropped after the commit, so the request id is
        checked before reporting the debit as failed.
        """
        logger.error(
            "Debit write failed",
            user_id=account_id,
            amount=amount,
            request_id=request_id,
            error=str(error),
        )
        try:
            committed = await self.repository.find_debit_by_request(request_id)
        except DatabaseError as lookup_error:
            await self.reconciliation.record(
                ReconciliationEntry(
                    kind="outcome_unknown",
                    user_id=account_id,
                    amount=amount,
                    request_id=request_id,
                    error=f"{error}; lookup failed: {lookup_error}",
                )
            )
            raise CollaboratorWriteError(
                f"Debit outcome unknown: {error}",
                step="debit",
                user_id=account_id,
                reconciliation_required=True,
            ) from error

        if committed is not None:
            logger.warning(
                "Debit committed despite write error",
                user_id=account_id,
                transaction_id=committed.id,
            )
            return committed

        raise CollaboratorWriteError(
            f"Debit failed: {error}", step="debit", user_id=account_id
        ) from error

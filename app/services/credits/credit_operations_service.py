"""
Credit operations service.

Orchestrates the two paid operations of the marketplace:
    - post_listing: flat fee for individual sellers, free for dealers
    - boost_listing: priority placement for a number of days

Order of steps is fixed: validate input -> load account and dealer flag ->
price -> checks that need no money movement (listing exists, not boosted) ->
debit -> grant -> history. Only failures after the debit need compensation,
and compensation writes a refund row so the ledger always balances.

Service layer returns API response models; the route maps errors to HTTP.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.audit import reconciliation_logger
from app.infrastructure.observability.logging import get_logger
from app.models.api.credit_request import CreditOperationRequest
from app.models.api.credit_response import BoostListingResponse, PostListingResponse
from app.models.domain.credit_domain import (
    Account,
    BoostGrant,
    CreditTransaction,
    ReconciliationEntry,
)
from app.repositories.account_repository import AccountRepository
from app.services.credits.boost_allocator import BoostAllocator, boost_end_date
from app.services.credits.errors import (
    AccountNotFoundError,
    BoostConflictError,
    CollaboratorWriteError,
    CreditOperationError,
    CreditValidationError,
    ListingNotFoundError,
    OperationTimeoutError,
)
from app.services.credits.ledger import BalanceLedger
from app.services.credits.pricing import (
    BOOST_LISTING,
    OPERATIONS,
    POST_LISTING,
    BoostQuote,
    post_listing_cost,
    quote_boost,
)

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class OperationContext:
    """Progress of one request, kept outside the deadline so it can be resolved."""

    request_id: str
    operation: str
    user_id: str
    car_id: int | None
    started_at: float
    quote: BoostQuote | None = None
    step: str = "load_account"
    account: Account | None = None
    charge: int = 0
    debit_attempted: bool = False
    debit: CreditTransaction | None = None
    boost_start: datetime | None = None
    boost_end: datetime | None = None
    grant: BoostGrant | None = None
    history_started: bool = False
    history_done: bool = False

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class CreditOperationsService:
    def __init__(
        self,
        accounts=AccountRepository,
        ledger: BalanceLedger | None = None,
        allocator: BoostAllocator | None = None,
        reconciliation=reconciliation_logger,
        timeout_s: float | None = None,
        clock=utcnow,
    ):
        self.accounts = accounts
        self.ledger = ledger or BalanceLedger(repository=accounts, reconciliation=reconciliation)
        self.allocator = allocator or BoostAllocator()
        self.reconciliation = reconciliation
        self.timeout_s = timeout_s or settings.CREDIT_OPERATION_TIMEOUT_S
        self.clock = clock

    async def execute(
        self, request: CreditOperationRequest, request_id: str
    ) -> PostListingResponse | BoostListingResponse:
        """
        Run one credit operation end to end.

        Raises:
            CreditOperationError: subclasses map to the documented HTTP statuses
            DatabaseError: a read failed (e.g. dealer lookup); fails closed
        """
        logger.info(
            "Credit operation started",
            operation=request.operation,
            user_id=request.user_id,
            car_id=request.car_id,
            boost_config=(
                request.boost_config.model_dump(by_alias=True) if request.boost_config else None
            ),
        )

        if not request.operation or not request.user_id:
            raise CreditValidationError("Missing operation or userId")

        if request.operation not in OPERATIONS:
            raise CreditValidationError(
                "Invalid operation - must be post_listing or boost_listing"
            )

        ctx = OperationContext(
            request_id=request_id,
            operation=request.operation,
            user_id=request.user_id,
            car_id=request.car_id,
            started_at=time.monotonic(),
        )

        if request.operation == BOOST_LISTING:
            config = request.boost_config
            if config is None:
                raise CreditValidationError("Missing boostConfig (priority, durationDays)")
            ctx.quote = quote_boost(config.priority, config.duration_days)
            if request.car_id is None:
                raise CreditValidationError("Missing carId")

        try:
            return await asyncio.wait_for(self._run(ctx), timeout=self.timeout_s)
        except TimeoutError:
            return await self._resolve_timeout(ctx)

    async def _run(self, ctx: OperationContext) -> PostListingResponse | BoostListingResponse:
        ctx.account = await self._load_account(ctx.user_id)

        logger.info(
            "User info",
            user_id=ctx.user_id,
            credit_balance=ctx.account.credit_balance,
            is_dealer=ctx.account.is_dealer,
        )

        if ctx.operation == POST_LISTING:
            return await self._post_listing(ctx)
        return await self._boost_listing(ctx)

    async def _load_account(self, user_id: str) -> Account:
        row = await self.accounts.get_account(user_id)
        if row is None:
            logger.warning("User not found", user_id=user_id)
            raise AccountNotFoundError(user_id)

        # A failed lookup propagates: defaulting to "not a dealer" would overcharge
        dealership_id = await self.accounts.get_dealership_id(user_id)

        return Account(
            id=row["id"],
            credit_balance=row["credit_balance"],
            is_dealer=dealership_id is not None,
            dealership_id=dealership_id,
        )

    # =======================================================================
    # POST LISTING
    # =======================================================================

    async def _post_listing(self, ctx: OperationContext) -> PostListingResponse:
        account = ctx.account
        cost = post_listing_cost(account.is_dealer)

        if cost == 0:
            logger.info("Dealer posting - no charge", user_id=account.id, car_id=ctx.car_id)
            return PostListingResponse(
                charged=0, balance=account.credit_balance, message="Dealer posts are free"
            )

        ctx.step = "debit"
        ctx.charge = cost
        ctx.debit_attempted = True
        ctx.debit = await self.ledger.debit(
            account.id,
            cost,
            POST_LISTING,
            str(ctx.car_id) if ctx.car_id is not None else None,
            f"Posted car listing #{ctx.car_id}",
            {"car_id": ctx.car_id},
            ctx.request_id,
        )

        return self._post_response(ctx)

    def _post_response(self, ctx: OperationContext) -> PostListingResponse:
        charged = -ctx.debit.amount
        logger.info(
            "Post listing succeeded",
            charged=charged,
            new_balance=ctx.debit.balance_after,
            processing_time_ms=ctx.elapsed_ms(),
        )
        return PostListingResponse(
            charged=charged,
            balance=ctx.debit.balance_after,
            message=f"Posted listing - {charged} credits deducted",
        )

    # =======================================================================
    # BOOST LISTING
    # =======================================================================

    async def _boost_listing(self, ctx: OperationContext) -> BoostListingResponse:
        account = ctx.account
        quote = ctx.quote

        logger.info(
            "Boost cost calculated",
            priority=quote.priority,
            duration_days=quote.duration_days,
            base_cost=quote.base_cost,
            multiplier=str(quote.multiplier),
            total_cost=quote.total_cost,
        )

        ctx.step = "check_listing"
        await self.allocator.ensure_grantable(ctx.car_id, self.clock())

        ctx.step = "debit"
        ctx.charge = quote.total_cost
        ctx.debit_attempted = True
        ctx.debit = await self.ledger.debit(
            account.id,
            quote.total_cost,
            BOOST_LISTING,
            str(ctx.car_id),
            f"Boosted car #{ctx.car_id} (priority {quote.priority}, {quote.duration_days} days)",
            {
                "car_id": ctx.car_id,
                "boost_priority": quote.priority,
                "duration_days": quote.duration_days,
                "base_cost": quote.base_cost,
                "multiplier": str(quote.multiplier),
            },
            ctx.request_id,
        )

        ctx.step = "grant"
        ctx.boost_start = self.clock()
        ctx.boost_end = boost_end_date(ctx.boost_start, quote.duration_days)
        try:
            ctx.grant = await self.allocator.grant_boost(
                ctx.car_id, quote.priority, ctx.boost_end, ctx.boost_start
            )
        except CollaboratorWriteError as e:
            ctx.grant = await self._recover_grant(ctx, e)
        except (BoostConflictError, ListingNotFoundError) as e:
            error = await self._compensate_after(ctx, e)
            if error is e:
                raise
            raise error from e

        await self._record_history(ctx)
        return self._boost_response(ctx)

    def _planned_grant(self, ctx: OperationContext) -> BoostGrant:
        return BoostGrant(
            car_id=ctx.car_id,
            priority=ctx.quote.priority,
            start_date=ctx.boost_start,
            end_date=ctx.boost_end,
        )

    async def _recover_grant(
        self, ctx: OperationContext, error: CollaboratorWriteError
    ) -> BoostGrant:
        """
        Resolve a grant whose statement raised.

        The UPDATE may have committed before the connection dropped, so the
        listing is checked for this request's end date before refunding.
        """
        try:
            granted = await self.allocator.is_granted(ctx.car_id, ctx.boost_end)
        except DatabaseError as lookup_error:
            await self.reconciliation.record(
                ReconciliationEntry(
                    kind="outcome_unknown",
                    user_id=ctx.user_id,
                    amount=-ctx.debit.amount,
                    transaction_id=ctx.debit.id,
                    car_id=ctx.car_id,
                    request_id=ctx.request_id,
                    error=f"{error.message}; lookup failed: {lookup_error}",
                )
            )
            error.user_id = ctx.user_id
            error.charged = True
            error.refunded = False
            error.reconciliation_required = True
            raise error from lookup_error

        if granted:
            logger.warning(
                "Boost grant committed despite write error",
                car_id=ctx.car_id,
                end_date=ctx.boost_end,
            )
            return self._planned_grant(ctx)

        raise await self._compensate_after(ctx, error)

    async def _record_history(self, ctx: OperationContext) -> None:
        ctx.step = "history"
        ctx.history_started = True
        recorded = await self.allocator.record_purchase(
            ctx.grant, ctx.account, ctx.quote.duration_days, -ctx.debit.amount
        )
        ctx.history_done = True
        if not recorded:
            await self._queue_missing_history(ctx, "boost history insert failed")

    async def _queue_missing_history(self, ctx: OperationContext, error: str) -> None:
        await self.reconciliation.record(
            ReconciliationEntry(
                kind="missing_boost_history",
                user_id=ctx.user_id,
                amount=-ctx.debit.amount,
                transaction_id=ctx.debit.id,
                car_id=ctx.car_id,
                request_id=ctx.request_id,
                error=error,
                metadata={
                    "boost_priority": ctx.quote.priority,
                    "duration_days": ctx.quote.duration_days,
                    "end_date": ctx.boost_end.isoformat() if ctx.boost_end else None,
                },
            )
        )

    async def _resolve_interrupted_history(self, ctx: OperationContext) -> None:
        """The insert may have committed before the deadline cancelled it."""
        try:
            recorded = await self.allocator.has_purchase_record(ctx.car_id, ctx.boost_end)
        except DatabaseError as e:
            await self._queue_missing_history(ctx, f"boost history insert interrupted: {e}")
            return

        if not recorded:
            await self._queue_missing_history(ctx, "boost history insert interrupted")

    def _boost_response(self, ctx: OperationContext) -> BoostListingResponse:
        charged = -ctx.debit.amount
        processing_time_ms = ctx.elapsed_ms()
        logger.info(
            "Boost listing succeeded",
            car_id=ctx.car_id,
            charged=charged,
            new_balance=ctx.debit.balance_after,
            end_date=ctx.grant.end_date,
            processing_time_ms=processing_time_ms,
        )
        return BoostListingResponse(
            charged=charged,
            balance=ctx.debit.balance_after,
            priority=ctx.grant.priority,
            end_date=ctx.grant.end_date,
            message=(
                f"Listing boosted at priority {ctx.grant.priority} "
                f"for {ctx.quote.duration_days} days"
            ),
            processing_time_ms=processing_time_ms,
        )

    # =======================================================================
    # COMPENSATION
    # =======================================================================

    async def _compensate(self, ctx: OperationContext, reason: str) -> bool:
        ctx.step = "compensation"
        reversal = await self.ledger.credit(
            ctx.user_id,
            -ctx.debit.amount,
            reversal_of=ctx.debit.id,
            reference_id=ctx.debit.reference_id,
            reason=reason,
            request_id=ctx.request_id,
        )
        return reversal is not None

    async def _compensate_after(
        self, ctx: OperationContext, error: CreditOperationError
    ) -> CreditOperationError:
        """
        Refund a debit whose grant did not happen and pick the error to report.

        A lost race (conflict/not found) that was refunded is reported as is.
        Anything left charged is reported as a write failure flagged for
        reconciliation, because the client must learn it was charged.
        """
        refunded = await self._compensate(ctx, reason=error.message)

        if isinstance(error, CollaboratorWriteError):
            error.user_id = ctx.user_id
            error.charged = True
            error.refunded = refunded
            error.reconciliation_required = not refunded
            return error

        if refunded:
            return error

        return CollaboratorWriteError(
            error.message,
            step="grant",
            user_id=ctx.user_id,
            charged=True,
            refunded=False,
            reconciliation_required=True,
        )

    # =======================================================================
    # DEADLINE
    # =======================================================================

    async def _resolve_timeout(
        self, ctx: OperationContext
    ) -> PostListingResponse | BoostListingResponse:
        """
        Complete or roll back an operation interrupted by the deadline.

        Nothing half-applied is left behind: an unconfirmed debit is looked up
        by request id, a confirmed grant is completed, anything else refunded.
        """
        logger.error(
            "Credit operation deadline exceeded",
            step=ctx.step,
            timeout_s=self.timeout_s,
            elapsed_ms=ctx.elapsed_ms(),
        )

        debit = ctx.debit
        if debit is None and ctx.debit_attempted:
            try:
                debit = await self.ledger.find_debit(ctx.request_id)
            except DatabaseError as e:
                await self.reconciliation.record(
                    ReconciliationEntry(
                        kind="outcome_unknown",
                        user_id=ctx.user_id,
                        amount=ctx.charge,
                        car_id=ctx.car_id,
                        request_id=ctx.request_id,
                        error=str(e),
                    )
                )
                raise OperationTimeoutError(
                    "Operation timed out and the charge could not be verified",
                    step="debit",
                    user_id=ctx.user_id,
                    reconciliation_required=True,
                ) from e

        if debit is None:
            raise OperationTimeoutError(
                "Operation timed out before any credits were charged",
                step=ctx.step,
                user_id=ctx.user_id,
            )

        ctx.debit = debit
        if ctx.operation == POST_LISTING:
            return self._post_response(ctx)

        granted = ctx.grant is not None
        if not granted and ctx.boost_end is not None:
            try:
                granted = await self.allocator.is_granted(ctx.car_id, ctx.boost_end)
            except DatabaseError as e:
                await self.reconciliation.record(
                    ReconciliationEntry(
                        kind="outcome_unknown",
                        user_id=ctx.user_id,
                        amount=-debit.amount,
                        transaction_id=debit.id,
                        car_id=ctx.car_id,
                        request_id=ctx.request_id,
                        error=str(e),
                    )
                )
                raise OperationTimeoutError(
                    "Operation timed out and the boost could not be verified",
                    step="grant",
                    user_id=ctx.user_id,
                    charged=True,
                    reconciliation_required=True,
                ) from e

        if granted:
            if ctx.grant is None:
                ctx.grant = self._planned_grant(ctx)
            if not ctx.history_started:
                await self._record_history(ctx)
            elif not ctx.history_done:
                await self._resolve_interrupted_history(ctx)
            return self._boost_response(ctx)

        refunded = await self._compensate(ctx, reason="deadline exceeded")
        raise OperationTimeoutError(
            "Operation timed out before the boost was granted",
            step="grant",
            user_id=ctx.user_id,
            charged=True,
            refunded=refunded,
            reconciliation_required=not refunded,
        )


credit_operations_service = CreditOperationsService()

"""
Boost allocator: at most one active boost per listing.

Per listing there are two states, Idle and Boosted. Idle -> Boosted happens
only through the guarded UPDATE in ListingRepository.grant_boost_if_idle;
Boosted -> Idle happens only by the end date passing (observed lazily here,
swept for display by the expire_boosts job).
"""

from datetime import datetime, timedelta

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credit_domain import Account, BoostGrant, BoostHistoryEntry, Listing
from app.repositories.listing_repository import ListingRepository
from app.services.credits.errors import (
    BoostConflictError,
    CollaboratorWriteError,
    ListingNotFoundError,
)

logger = get_logger(__name__)


def boost_end_date(start: datetime, duration_days: int) -> datetime:
    return start + timedelta(days=duration_days)


class BoostAllocator:
    def __init__(self, repository=ListingRepository):
        self.repository = repository

    async def get_listing(self, car_id: int) -> Listing | None:
        row = await self.repository.get_listing(car_id)
        return Listing(**row) if row else None

    async def ensure_grantable(self, car_id: int, now: datetime) -> Listing:
        """
        Existence and exclusivity check, run before any money moves.

        Raises:
            ListingNotFoundError: no such listing
            BoostConflictError: listing is Boosted
        """
        listing = await self.get_listing(car_id)
        if listing is None:
            raise ListingNotFoundError(car_id)

        if listing.has_active_boost(now):
            logger.warning(
                "Car already has active boost",
                car_id=car_id,
                existing_priority=listing.boost_priority,
                existing_end_date=listing.boost_end_date,
            )
            raise BoostConflictError(
                car_id, listing.boost_end_date, listing.boost_priority
            )

        return listing

    async def grant_boost(
        self, car_id: int, priority: int, end_date: datetime, now: datetime
    ) -> BoostGrant:
        """
        Idle -> Boosted.

        The guard re-checks exclusivity inside the UPDATE, so a concurrent
        grant that won the race surfaces here as BoostConflictError.

        Raises:
            BoostConflictError: another grant is active
            ListingNotFoundError: listing deleted since the pre-check
            CollaboratorWriteError: the UPDATE itself failed
        """
        try:
            row = await self.repository.grant_boost_if_idle(car_id, priority, end_date, now)
        except DatabaseError as e:
            logger.error("Boost grant write failed", car_id=car_id, error=str(e))
            raise CollaboratorWriteError(f"Boost grant failed: {e}", step="grant") from e

        if row is None:
            # Guard did not match: find out why without trusting the earlier read
            try:
                listing = await self.get_listing(car_id)
            except DatabaseError as e:
                raise CollaboratorWriteError(
                    f"Boost grant not applied and listing unreadable: {e}", step="grant"
                ) from e
            if listing is None:
                raise ListingNotFoundError(car_id)
            logger.warning(
                "Boost grant lost race",
                car_id=car_id,
                existing_priority=listing.boost_priority,
                existing_end_date=listing.boost_end_date,
            )
            raise BoostConflictError(car_id, listing.boost_end_date, listing.boost_priority)

        logger.info("Boost granted", car_id=car_id, priority=priority, end_date=end_date)
        return BoostGrant(car_id=car_id, priority=priority, start_date=now, end_date=end_date)

    async def is_granted(self, car_id: int, end_date: datetime) -> bool:
        """Whether the grant identified by its end date is on the listing."""
        return await self.repository.has_boost_ending_at(car_id, end_date)

    async def has_purchase_record(self, car_id: int, end_date: datetime) -> bool:
        return await self.repository.has_purchase_history(car_id, end_date)

    async def record_purchase(
        self, grant: BoostGrant, account: Account, duration_days: int, credits_spent: int
    ) -> bool:
        """
        Append the "purchased" history row.

        Returns False when the write failed; the boost itself stands.
        """
        entry = BoostHistoryEntry(
            car_id=grant.car_id,
            dealership_id=account.dealership_id,
            user_id=account.id,
            action_type="purchased",
            boost_priority=grant.priority,
            duration_days=duration_days,
            credits_spent=credits_spent,
            start_date=grant.start_date,
            end_date=grant.end_date,
            notes=f"Priority {grant.priority} boost for {duration_days} days",
        )
        try:
            await self.repository.add_history(entry)
            return True
        except DatabaseError as e:
            logger.error(
                "Failed to append boost history",
                car_id=grant.car_id,
                user_id=account.id,
                credits_spent=credits_spent,
                error=str(e),
            )
            return False

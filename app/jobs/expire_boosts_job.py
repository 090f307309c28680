"""
Boost Expiry Background Job - clears lapsed boosts from listings.

A boost is over as soon as its end date passes; the grant guard already treats
such a listing as Idle. This job only tidies the denormalized flags the feed
sorts on (is_boosted, boost_priority, boost_end_date) and appends an "expired"
row to boost_history for analytics.

Schedule:
- Every BOOST_EXPIRY_INTERVAL_S seconds (default 15 minutes)

Design:
- One UPDATE ... RETURNING clears every lapsed listing
- One history insert per expired listing; a failed insert is logged and
  counted, never aborts the sweep

Usage:
    python -m app.jobs.worker expire_boosts        # loop forever
    python -m app.jobs.worker expire_boosts_once   # single sweep
"""

import asyncio
import time
from datetime import UTC, datetime

from app.config import settings
from app.db.helpers import DatabaseError
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credit_domain import BoostHistoryEntry
from app.repositories.listing_repository import ListingRepository

logger = get_logger(__name__)

# Back-off after an unexpected scheduler error
ERROR_RETRY_DELAY_S = 60.0


class ExpireBoostsJob:
    """Background job that resets lapsed boosts."""

    def __init__(self, repository=ListingRepository):
        self.repository = repository
        self.is_running = False
        self.last_run_time: datetime | None = None

    async def run_sweep(self, now: datetime | None = None) -> dict:
        """
        Expire every boost whose end date is at or before ``now``.

        Returns:
            dict: {
                "success": bool,
                "expired": int,
                "listings": list[int],
                "errors": list[str],
                "processingTimeMs": int,
            }
        """
        if self.is_running:
            logger.warning("Boost expiry sweep already running, skipping")
            return {"success": False, "error": "Already running"}

        self.is_running = True
        started = time.monotonic()
        now = now or datetime.now(UTC)

        result = {"success": True, "expired": 0, "listings": [], "errors": []}

        try:
            try:
                expired_rows = await self.repository.clear_expired_boosts(now)
            except DatabaseError as e:
                logger.error("Failed to clear expired boosts", error=str(e))
                result["success"] = False
                result["errors"].append(f"Failed to clear expired boosts: {e}")
                expired_rows = []

            for row in expired_rows:
                result["expired"] += 1
                result["listings"].append(row["id"])

                try:
                    await self.repository.add_history(
                        BoostHistoryEntry(
                            car_id=row["id"],
                            user_id=row.get("user_id"),
                            action_type="expired",
                            boost_priority=row.get("boost_priority"),
                            end_date=row.get("boost_end_date"),
                            notes="Boost expired",
                        )
                    )
                except DatabaseError as e:
                    error_msg = f"Failed to record expiry for car {row['id']}: {e}"
                    logger.error(error_msg, car_id=row["id"])
                    result["errors"].append(error_msg)

        finally:
            self.is_running = False
            self.last_run_time = now

        result["processingTimeMs"] = int((time.monotonic() - started) * 1000)

        logger.info(
            "Boost expiry sweep completed",
            expired=result["expired"],
            error_count=len(result["errors"]),
            processing_time_ms=result["processingTimeMs"],
        )
        return result


# Singleton instance for application use
expire_boosts_job = ExpireBoostsJob()


async def run_expire_boosts_once() -> dict:
    """Run a single sweep from a standalone worker process."""
    await db_pool.initialize()
    try:
        return await expire_boosts_job.run_sweep()
    finally:
        await db_pool.close()


async def start_expire_boosts_scheduler():
    """Run the sweep forever, every BOOST_EXPIRY_INTERVAL_S seconds."""
    interval = settings.BOOST_EXPIRY_INTERVAL_S
    logger.info("Starting boost expiry scheduler", interval_seconds=interval)

    await db_pool.initialize()

    try:
        while True:
            try:
                await expire_boosts_job.run_sweep()
                await asyncio.sleep(interval)

            except Exception as e:
                logger.error(
                    "Error in boost expiry scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_RETRY_DELAY_S)
    finally:
        await db_pool.close()

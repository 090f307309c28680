"""
Repository for listing boost state (cars) and the boost_history log.
"""

from datetime import datetime
from typing import Any

from app.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from app.models.domain.credit_domain import BoostHistoryEntry

_LISTING_COLUMNS = "id, user_id::text AS user_id, is_boosted, boost_priority, boost_end_date"


class ListingRepository:
    """Thin wrappers around the cars and boost_history tables."""

    @staticmethod
    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_listing(car_id: int) -> dict[str, Any] | None:
        try:
            return await fetch_one(f"SELECT {_LISTING_COLUMNS} FROM cars WHERE id = %s", (car_id,))
        except DatabaseError as e:
            # Out of range for the id column
            if e.invalid_input:
                return None
            raise

    @staticmethod
    async def grant_boost_if_idle(
        car_id: int, priority: int, end_date: datetime, now: datetime
    ) -> dict[str, Any] | None:
        """
        Idle -> Boosted as one guarded UPDATE.

        A listing is Idle when it is not flagged or its boost has lapsed.
        Returns the updated row, or None when the guard did not match.
        """
        query = f"""
        UPDATE cars
        SET is_boosted = true,
            boost_priority = %(priority)s,
            boost_end_date = %(end_date)s
        WHERE id = %(car_id)s
          AND (
              is_boosted = false
              OR boost_end_date IS NULL
              OR boost_end_date <= %(now)s
          )
        RETURNING {_LISTING_COLUMNS}
        """
        return await fetch_one(
            query,
            {"priority": priority, "end_date": end_date, "car_id": car_id, "now": now},
        )

    @staticmethod
    async def has_boost_ending_at(car_id: int, end_date: datetime) -> bool:
        """True when the listing carries the boost a specific request granted."""
        row = await fetch_one(
            """
            SELECT 1 AS granted
            FROM cars
            WHERE id = %s AND is_boosted = true AND boost_end_date = %s
            """,
            (car_id, end_date),
        )
        return row is not None

    @staticmethod
    async def has_purchase_history(car_id: int, end_date: datetime) -> bool:
        row = await fetch_one(
            """
            SELECT 1 AS recorded
            FROM boost_history
            WHERE car_id = %s AND action_type = 'purchased' AND end_date = %s
            LIMIT 1
            """,
            (car_id, end_date),
        )
        return row is not None

    @staticmethod
    async def add_history(entry: BoostHistoryEntry) -> None:
        query = """
        INSERT INTO boost_history (
            car_id, dealership_id, user_id, action_type, boost_priority,
            duration_days, credits_spent, start_date, end_date, notes
        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                entry.car_id,
                entry.dealership_id,
                entry.user_id,
                entry.action_type,
                entry.boost_priority,
                entry.duration_days,
                entry.credits_spent,
                entry.start_date,
                entry.end_date,
                entry.notes,
            ),
        )

    @staticmethod
    async def clear_expired_boosts(now: datetime) -> list[dict[str, Any]]:
        """
        Reset the boost flags of every listing whose boost has lapsed.

        The old values are returned from a self-join so the caller can log them.
        """
        query = """
        UPDATE cars AS c
        SET is_boosted = false,
            boost_priority = NULL,
            boost_end_date = NULL
        FROM cars AS prev
        WHERE c.id = prev.id
          AND c.is_boosted = true
          AND c.boost_end_date <= %s
        RETURNING c.id, c.user_id::text AS user_id, prev.boost_priority, prev.boost_end_date
        """
        return await fetch_all(query, (now,))

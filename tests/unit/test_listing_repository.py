"""
SQL contract tests for ListingRepository.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.db.helpers import DatabaseError
from app.models.domain.credit_domain import BoostHistoryEntry
from app.repositories.listing_repository import ListingRepository

MODULE = "app.repositories.listing_repository"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_grant_guard_treats_lapsed_boost_as_idle(monkeypatch):
    fetch = AsyncMock(return_value={"id": 42})
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch)
    end = NOW + timedelta(days=7)

    row = await ListingRepository.grant_boost_if_idle(42, 3, end, NOW)

    assert row == {"id": 42}
    query, params = fetch.call_args.args
    assert "is_boosted = false" in query
    assert "boost_end_date IS NULL" in query
    assert "boost_end_date <= %(now)s" in query
    assert params == {"priority": 3, "end_date": end, "car_id": 42, "now": NOW}


@pytest.mark.asyncio
async def test_has_boost_ending_at(monkeypatch):
    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(return_value={"granted": 1}))
    assert await ListingRepository.has_boost_ending_at(42, NOW) is True

    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(return_value=None))
    assert await ListingRepository.has_boost_ending_at(42, NOW) is False


@pytest.mark.asyncio
async def test_add_history_inserts_all_columns(monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(f"{MODULE}.execute_query", execute)

    await ListingRepository.add_history(
        BoostHistoryEntry(
            car_id=42,
            user_id="user-1",
            action_type="purchased",
            boost_priority=3,
            duration_days=7,
            credits_spent=13,
            start_date=NOW,
            end_date=NOW + timedelta(days=7),
        )
    )

    query, params = execute.call_args.args
    assert "INSERT INTO boost_history" in query
    assert params[0] == 42
    assert params[3] == "purchased"
    assert params[6] == 13


@pytest.mark.asyncio
async def test_clear_expired_boosts_returns_previous_values(monkeypatch):
    rows = [{"id": 42, "user_id": "user-1", "boost_priority": 3, "boost_end_date": NOW}]
    fetch_all = AsyncMock(return_value=rows)
    monkeypatch.setattr(f"{MODULE}.fetch_all", fetch_all)

    result = await ListingRepository.clear_expired_boosts(NOW)

    assert result == rows
    query, params = fetch_all.call_args.args
    assert "prev.boost_priority" in query
    assert params == (NOW,)


@pytest.mark.asyncio
async def test_has_purchase_history_matches_end_date(monkeypatch):
    fetch = AsyncMock(return_value={"recorded": 1})
    monkeypatch.setattr(f"{MODULE}.fetch_one", fetch)

    assert await ListingRepository.has_purchase_history(42, NOW) is True
    query, params = fetch.call_args.args
    assert "FROM boost_history" in query
    assert "action_type = 'purchased'" in query
    assert params == (42, NOW)

    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(return_value=None))
    assert await ListingRepository.has_purchase_history(42, NOW) is False


@pytest.mark.asyncio
async def test_out_of_range_car_id_is_not_found(monkeypatch):
    error = DatabaseError("bigint out of range", recoverable=False, invalid_input=True)
    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(side_effect=error))

    assert await ListingRepository.get_listing(2**63) is None


@pytest.mark.asyncio
async def test_get_listing_propagates_other_errors(monkeypatch):
    error = DatabaseError("connection reset", recoverable=False)
    monkeypatch.setattr(f"{MODULE}.fetch_one", AsyncMock(side_effect=error))

    with pytest.raises(DatabaseError):
        await ListingRepository.get_listing(42)

"""
Tests for BoostAllocator (Idle/Boosted transitions per listing).
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from app.models.domain.credit_domain import Account, BoostGrant
from app.services.credits.boost_allocator import boost_end_date
from app.services.credits.errors import (
    BoostConflictError,
    CollaboratorWriteError,
    ListingNotFoundError,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_boost_end_date_adds_days():
    assert boost_end_date(NOW, 7) == NOW + timedelta(days=7)


@pytest.mark.asyncio
async def test_ensure_grantable_idle_listing(fake_db, allocator):
    fake_db.add_car(42)

    listing = await allocator.ensure_grantable(42, NOW)

    assert listing.id == 42
    assert listing.is_boosted is False


@pytest.mark.asyncio
async def test_ensure_grantable_missing_listing(allocator):
    with pytest.raises(ListingNotFoundError):
        await allocator.ensure_grantable(999, NOW)


@pytest.mark.asyncio
async def test_ensure_grantable_active_boost_conflicts(fake_db, allocator):
    end = NOW + timedelta(days=2)
    fake_db.add_car(42, is_boosted=True, boost_priority=4, boost_end_date=end)

    with pytest.raises(BoostConflictError) as exc_info:
        await allocator.ensure_grantable(42, NOW)

    body = exc_info.value.to_body()
    assert exc_info.value.status_code == 409
    assert body["existingPriority"] == 4
    assert body["existingBoostEndDate"] == end.isoformat()


@pytest.mark.asyncio
async def test_lapsed_boost_counts_as_idle(fake_db, allocator):
    fake_db.add_car(42, is_boosted=True, boost_priority=2, boost_end_date=NOW - timedelta(hours=1))

    await allocator.ensure_grantable(42, NOW)
    grant = await allocator.grant_boost(42, 5, NOW + timedelta(days=3), NOW)

    assert grant.priority == 5
    assert fake_db.cars[42]["boost_priority"] == 5


@pytest.mark.asyncio
async def test_grant_boost_sets_listing_state(fake_db, allocator):
    fake_db.add_car(42)
    end = NOW + timedelta(days=7)

    grant = await allocator.grant_boost(42, 3, end, NOW)

    assert grant == BoostGrant(car_id=42, priority=3, start_date=NOW, end_date=end)
    assert fake_db.cars[42]["is_boosted"] is True
    assert await allocator.is_granted(42, end) is True
    assert await allocator.is_granted(42, end + timedelta(seconds=1)) is False


@pytest.mark.asyncio
async def test_concurrent_grants_only_one_wins(fake_db, allocator):
    fake_db.add_car(42)

    results = await asyncio.gather(
        *[
            allocator.grant_boost(42, p, NOW + timedelta(days=3, minutes=p), NOW)
            for p in range(1, 6)
        ],
        return_exceptions=True,
    )

    grants = [r for r in results if isinstance(r, BoostGrant)]
    conflicts = [r for r in results if isinstance(r, BoostConflictError)]
    assert len(grants) == 1
    assert len(conflicts) == 4
    assert fake_db.cars[42]["boost_priority"] == grants[0].priority


@pytest.mark.asyncio
async def test_grant_on_deleted_listing_is_not_found(allocator):
    with pytest.raises(ListingNotFoundError):
        await allocator.grant_boost(7, 3, NOW + timedelta(days=3), NOW)


@pytest.mark.asyncio
async def test_grant_write_error_is_collaborator_error(fake_db, allocator):
    fake_db.add_car(42)
    fake_db.fail("grant_boost_if_idle")

    with pytest.raises(CollaboratorWriteError) as exc_info:
        await allocator.grant_boost(42, 3, NOW + timedelta(days=3), NOW)

    assert exc_info.value.step == "grant"
    assert fake_db.cars[42]["is_boosted"] is False


@pytest.mark.asyncio
async def test_record_purchase_appends_history(fake_db, allocator):
    grant = BoostGrant(car_id=42, priority=3, start_date=NOW, end_date=NOW + timedelta(days=7))
    account = Account(id="user-1", credit_balance=87, is_dealer=True, dealership_id=9)

    assert await allocator.record_purchase(grant, account, 7, 13) is True

    entry = fake_db.history[0]
    assert entry.action_type == "purchased"
    assert entry.credits_spent == 13
    assert entry.dealership_id == 9
    assert entry.duration_days == 7


@pytest.mark.asyncio
async def test_record_purchase_failure_returns_false(fake_db, allocator):
    fake_db.fail("add_history")
    grant = BoostGrant(car_id=42, priority=3, start_date=NOW, end_date=NOW + timedelta(days=7))

    recorded = await allocator.record_purchase(grant, Account(id="u", credit_balance=0), 7, 13)

    assert recorded is False
    assert fake_db.history == []

"""
Tests for the query helpers' error translation.
"""

from contextlib import asynccontextmanager

import psycopg
import pytest

from app.db.helpers import DatabaseError, fetch_one


class FailingConnection:
    def __init__(self, error):
        self.error = error

    @asynccontextmanager
    async def cursor(self):
        yield self

    async def execute(self, query, params):
        raise self.error


@pytest.mark.asyncio
async def test_rejected_parameter_is_invalid_input():
    error = psycopg.errors.InvalidTextRepresentation('invalid input syntax for type uuid: "abc"')

    with pytest.raises(DatabaseError) as exc_info:
        await fetch_one(
            "SELECT id FROM users WHERE id = %s", ("abc",), connection=FailingConnection(error)
        )

    assert exc_info.value.invalid_input is True
    assert exc_info.value.recoverable is False
    assert exc_info.value.operation == "fetch_one"


@pytest.mark.asyncio
async def test_dropped_connection_is_recoverable():
    error = psycopg.OperationalError("server closed the connection unexpectedly")

    with pytest.raises(DatabaseError) as exc_info:
        await fetch_one("SELECT 1", connection=FailingConnection(error))

    assert exc_info.value.recoverable is True
    assert exc_info.value.invalid_input is False

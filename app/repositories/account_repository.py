"""
Repository for account balances and the credit_transactions ledger.

Balance mutations are single statements: the balance change and its ledger
row are written by one CTE, so a committed debit always has its transaction
row and ``balance_after`` is the balance that statement committed.
"""

from typing import Any

from psycopg.types.json import Jsonb

from app.db.helpers import DatabaseError, fetch_one, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credit_domain import CreditTransaction

logger = get_logger(__name__)

_TRANSACTION_COLUMNS = """
    id, user_id::text AS user_id, amount, balance_after, transaction_type, purpose,
    reference_id, description, metadata, request_id, reversal_of, created_at
"""


class AccountRepository:
    """Thin wrappers around the users, dealerships and credit_transactions tables."""

    @staticmethod
    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_account(user_id: str) -> dict[str, Any] | None:
        try:
            return await fetch_one(
                "SELECT id::text AS id, credit_balance FROM users WHERE id = %s",
                (user_id,),
            )
        except DatabaseError as e:
            # users.id is a uuid: an id Postgres cannot parse matches no user
            if e.invalid_input:
                logger.info("Unparseable user id", user_id=user_id)
                return None
            raise

    @staticmethod
    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_dealership_id(user_id: str) -> int | None:
        """Return the dealership owned by the user, or None for individual sellers."""
        row = await fetch_one(
            "SELECT id FROM dealerships WHERE user_id = %s ORDER BY id LIMIT 1",
            (user_id,),
        )
        return row["id"] if row else None

    @staticmethod
    async def get_balance(user_id: str) -> int | None:
        row = await fetch_one("SELECT credit_balance FROM users WHERE id = %s", (user_id,))
        return row["credit_balance"] if row else None

    @staticmethod
    async def debit(
        user_id: str,
        amount: int,
        purpose: str,
        reference_id: str | None,
        description: str,
        metadata: dict[str, Any],
        request_id: str,
    ) -> CreditTransaction | None:
        """
        Atomically decrement the balance and append the deduction row.

        Returns None when no row matched: either the account does not exist or
        its balance is below ``amount``. The caller disambiguates.
        """
        query = f"""
        WITH debited AS (
            UPDATE users
            SET credit_balance = credit_balance - %(amount)s
            WHERE id = %(user_id)s
              AND credit_balance >= %(amount)s
            RETURNING id, credit_balance
        )
        INSERT INTO credit_transactions (
            user_id, amount, balance_after, transaction_type, purpose,
            reference_id, description, metadata, request_id
        )
        SELECT
            id, -%(amount)s, credit_balance, 'deduction', %(purpose)s,
            %(reference_id)s, %(description)s, %(metadata)s, %(request_id)s
        FROM debited
        RETURNING {_TRANSACTION_COLUMNS}
        """
        row = await fetch_one(
            query,
            {
                "amount": amount,
                "user_id": user_id,
                "purpose": purpose,
                "reference_id": reference_id,
                "description": description,
                "metadata": Jsonb(metadata),
                "request_id": request_id,
            },
        )
        return CreditTransaction(**row) if row else None

    @staticmethod
    async def find_debit_by_request(request_id: str) -> CreditTransaction | None:
        """Look up the deduction written by a request whose outcome is unknown."""
        row = await fetch_one(
            f"""
            SELECT {_TRANSACTION_COLUMNS}
            FROM credit_transactions
            WHERE request_id = %s AND transaction_type = 'deduction'
            """,
            (request_id,),
        )
        return CreditTransaction(**row) if row else None

    @staticmethod
    async def reverse_debit(
        user_id: str,
        amount: int,
        reversal_of: int,
        reference_id: str | None,
        description: str,
        metadata: dict[str, Any],
    ) -> CreditTransaction | None:
        """
        Credit ``amount`` back and append the matching refund row.

        The increment is relative so concurrent debits are not overwritten. At
        most one reversal can exist per deduction (``reversal_of`` is unique);
        a repeated call returns the reversal already written.
        """
        query = f"""
        WITH credited AS (
            UPDATE users
            SET credit_balance = credit_balance + %(amount)s
            WHERE id = %(user_id)s
              AND NOT EXISTS (
                  SELECT 1 FROM credit_transactions WHERE reversal_of = %(reversal_of)s
              )
            RETURNING id, credit_balance
        )
        INSERT INTO credit_transactions (
            user_id, amount, balance_after, transaction_type, purpose,
            reference_id, description, metadata, reversal_of
        )
        SELECT
            id, %(amount)s, credit_balance, 'refund', 'refund',
            %(reference_id)s, %(description)s, %(metadata)s, %(reversal_of)s
        FROM credited
        RETURNING {_TRANSACTION_COLUMNS}
        """
        row = await fetch_one(
            query,
            {
                "amount": amount,
                "user_id": user_id,
                "reversal_of": reversal_of,
                "reference_id": reference_id,
                "description": description,
                "metadata": Jsonb(metadata),
            },
        )
        if row:
            return CreditTransaction(**row)

        existing = await fetch_one(
            f"SELECT {_TRANSACTION_COLUMNS} FROM credit_transactions WHERE reversal_of = %s",
            (reversal_of,),
        )
        if existing:
            logger.info("Deduction already reversed", transaction_id=reversal_of)
            return CreditTransaction(**existing)

        return None

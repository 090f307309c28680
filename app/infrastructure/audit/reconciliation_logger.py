"""
ReconciliationLogger - records charges that need manual remediation.

A reconciliation entry means credits were taken and neither the purchased
service nor a reversal can be proven. These are written to:
1. Structured logs as a ``reconciliation_required`` error event (alerting)
2. The credit_reconciliation_queue table (work queue for support/finance)

Usage:
    from app.infrastructure.audit import reconciliation_logger

    await reconciliation_logger.record(
        ReconciliationEntry(
            kind="compensation_failed",
            user_id=user_id,
            amount=13,
            transaction_id=txn.id,
            car_id=car_id,
            request_id=request_id,
            error=str(e),
        )
    )
"""

from datetime import UTC, datetime

from psycopg.types.json import Jsonb

from app.db.helpers import execute_query
from app.infrastructure.observability.logging import get_logger
from app.models.domain.credit_domain import ReconciliationEntry

logger = get_logger(__name__)


class ReconciliationLogger:
    """
    Writes reconciliation-required entries.

    Never raises: the caller is already on a failure path and must still
    return its original error.
    """

    @staticmethod
    async def record(entry: ReconciliationEntry) -> bool:
        """
        Log and persist a reconciliation entry.

        Returns:
            True if persisted, False if only the log line could be written
        """
        # Log line first: it survives a database outage
        logger.error(
            "reconciliation_required",
            reconciliation_kind=entry.kind,
            user_id=entry.user_id,
            amount=entry.amount,
            transaction_id=entry.transaction_id,
            car_id=entry.car_id,
            request_id=entry.request_id,
            error=entry.error,
        )

        try:
            await execute_query(
                """
                INSERT INTO credit_reconciliation_queue (
                    kind, user_id, amount, transaction_id, car_id,
                    request_id, error, metadata, status, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'open', %s)
                """,
                (
                    entry.kind,
                    entry.user_id,
                    entry.amount,
                    entry.transaction_id,
                    entry.car_id,
                    entry.request_id,
                    entry.error,
                    Jsonb(entry.metadata),
                    datetime.now(UTC),
                ),
            )
            return True

        except Exception as e:
            # Enough context to recreate the queue row by hand
            logger.critical(
                "Failed to persist reconciliation entry",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data=entry.model_dump(mode="json"),
            )
            return False


reconciliation_logger = ReconciliationLogger()

"""
Reconciliation logging for charges that need manual remediation.
"""

from app.infrastructure.audit.reconciliation_logger import (
    ReconciliationLogger,
    reconciliation_logger,
)

__all__ = ["ReconciliationLogger", "reconciliation_logger"]

"""
Background jobs module.
"""

from heirloom.jobs.lifecycle_reconciliation import (
    LifecycleReconciliationEngine,
    ReconciliationReport,
    build_engine,
    run_lifecycle_reconciliation,
)

__all__ = [
    "LifecycleReconciliationEngine",
    "ReconciliationReport",
    "build_engine",
    "run_lifecycle_reconciliation",
]

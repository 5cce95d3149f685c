"""
Scheduling Package

Occurrence computation (scheduler), per-rule catch-up (materializer) and
the per-owner pass over all active rules (processor).
"""

from recurring_ledger.scheduling.scheduler import (
    DEFAULT_MAX_ITERATIONS,
    ScheduleWalk,
    compute_next_process_date,
    due_occurrences,
    resume_date,
    seed_process_date,
    upcoming_occurrences,
)
from recurring_ledger.scheduling.materializer import (
    Materializer,
    build_draft,
    ledger_category,
    payment_method,
)
from recurring_ledger.scheduling.processor import DueTransactionProcessor

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "DueTransactionProcessor",
    "Materializer",
    "ScheduleWalk",
    "build_draft",
    "compute_next_process_date",
    "due_occurrences",
    "ledger_category",
    "payment_method",
    "resume_date",
    "seed_process_date",
    "upcoming_occurrences",
]

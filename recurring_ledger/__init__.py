"""
Recurring Ledger - Source Package

Recurring-transaction scheduling for a personal-finance ledger: rules such as
"pay 1200 monthly from Jan 15, on Friday if that is a weekend" are replayed into concrete
ledger transactions, exactly where they fall due, however long the app was
left unopened.

DESIGN PRINCIPLES:
1. Scheduling is deterministic (same rule + same "today" = same occurrences)
2. The cursor is the only memory - resume from it after any gap
3. One broken rule never blocks its siblings
4. Every materialization is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Recurring Ledger Team"

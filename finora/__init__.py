"""
Finora - Recurring Transactions Engine

Materializes recurring income/expense templates of the Finora ledger
into dated transactions, once a day.

DESIGN PRINCIPLES:
1. A pass never fails atomically - one bad template is counted, not fatal
2. The engine only appends; templates and past occurrences are never changed
3. Time is injected, so every schedule can be tested without waiting
4. Storage layer is swappable
5. Every pass is auditable
"""

__version__ = "1.0.0"
__author__ = "Finora Team"

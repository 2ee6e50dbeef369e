"""
Update log for entstore.

This module provides the per-dispatch-cycle update log:
- UpdateRecord / UpdateType: immutable mutation descriptions (wire shape)
- Transaction: append-only ordered log with per-table views

Invariants:
    - Records are appended, never reordered or removed
    - Per-table views preserve global insertion order
    - Each record is applied at most once
"""

from .records import UpdateRecord, UpdateType
from .transaction import Transaction

__all__ = [
    "UpdateRecord",
    "UpdateType",
    "Transaction",
]

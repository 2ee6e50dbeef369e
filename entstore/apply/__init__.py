"""
Apply module for entstore - copy-on-write table updates.

This module handles:
- TableState, the immutable table value
- BatchContext, the ownership scope of one get_next_state() call
- apply_updates, which folds a table's records into its next value

Invariants:
    - Untouched tables stay reference-identical across dispatch cycles
    - Records within a table are applied in log order
"""

from .ops import BatchContext, apply_updates
from .table import TableState

__all__ = [
    "TableState",
    "BatchContext",
    "apply_updates",
]

"""
Ordered update log for one dispatch cycle.

The Transaction accumulates UpdateRecords in the order they were issued
and provides table-scoped views over them. After the apply engine consumes
a table's records the table is marked applied, so a later pass can find
tables whose records nobody consumed (tables with no reducer, link tables
fed by other tables' reducers).

Invariants:
    - Records are never reordered or removed
    - Per-table views preserve global insertion order
    - A record is applied at most once

How to change safely:
    - Keep add_update() O(1); it runs for every recorded mutation
    - close() is advisory; do not start raising on late appends without
      auditing the relation cleanup hooks that append after deletes
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List

from ..errors import MalformedUpdateError
from .records import UpdateRecord

logger = logging.getLogger(__name__)


@dataclass
class _LoggedUpdate:
    """A record plus its applied marker."""

    record: UpdateRecord
    applied: bool = False


class Transaction:
    """Append-only log of update records for one dispatch cycle.

    Example:
        >>> tx = Transaction()
        >>> tx.add_update(UpdateRecord.delete("Book", [2]))
        >>> tx.get_updates_for("Book")
        [UpdateRecord(type=<UpdateType.DELETE: 'DELETE'>, payload=[2], table='Book')]
    """

    def __init__(self) -> None:
        """Initialize an empty, open log."""
        self._updates: List[_LoggedUpdate] = []
        self._updates_by_table: Dict[str, List[_LoggedUpdate]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether close() was called."""
        return self._closed

    @property
    def updates(self) -> List[UpdateRecord]:
        """All records in insertion order."""
        return [u.record for u in self._updates]

    def __len__(self) -> int:
        return len(self._updates)

    def add_update(self, record: UpdateRecord) -> None:
        """Append a record to the log.

        Args:
            record: Record to append

        Raises:
            MalformedUpdateError: If record is not an UpdateRecord
        """
        if not isinstance(record, UpdateRecord):
            raise MalformedUpdateError(
                f"Expected UpdateRecord, got {type(record).__name__}"
            )
        if self._closed:
            logger.warning(
                "Update added to a closed transaction",
                extra={"table": record.table, "update_type": record.type.value},
            )

        logged = _LoggedUpdate(record)
        self._updates.append(logged)
        self._updates_by_table[record.table].append(logged)

        logger.debug(
            "Update recorded",
            extra={
                "table": record.table,
                "update_type": record.type.value,
                "position": len(self._updates) - 1,
            },
        )

    def get_updates_for(self, table: str) -> List[UpdateRecord]:
        """All records targeting `table`, in insertion order."""
        return [u.record for u in self._updates_by_table.get(table, ())]

    def get_pending_updates_for(self, table: str) -> List[UpdateRecord]:
        """Records targeting `table` that have not been applied yet."""
        return [u.record for u in self._updates_by_table.get(table, ()) if not u.applied]

    def mark_applied(self, table: str) -> None:
        """Mark every record currently logged for `table` as applied."""
        for logged in self._updates_by_table.get(table, ()):
            logged.applied = True

    def get_unapplied_updates_by_model(self) -> Dict[str, List[UpdateRecord]]:
        """Pending records grouped by table.

        Only tables with at least one pending record appear; an empty dict
        means everything was applied.
        """
        unapplied: Dict[str, List[UpdateRecord]] = {}
        for table, logged in self._updates_by_table.items():
            pending = [u.record for u in logged if not u.applied]
            if pending:
                unapplied[table] = pending
        return unapplied

    def close(self) -> None:
        """Mark the log finished for this cycle."""
        self._closed = True
        logger.debug("Transaction closed", extra={"updates": len(self._updates)})

"""
Copy-on-write apply engine for entstore.

Given a table value and the ordered update records targeting it, the
engine produces the table's next value. Unaffected records are shared with
the previous value; only containers and records that change are copied.

A BatchContext brackets one Session.get_next_state() call. Objects the
engine copies during a batch are owned by it, so a second write to the
same record (or a second pass over the same table) in that batch mutates
the draft instead of copying again. Objects reachable from the previous
state are never owned and never mutated, except by a mutating batch,
which backs in-place sessions.

Invariants:
    - The input table is never mutated (non-mutating batches)
    - Records within one table are applied strictly in log order
    - An empty record list returns the input table object itself
    - Tables are independent; order across tables does not matter

How to change safely:
    - New UpdateType members need a branch in _TableDraft.apply()
    - Keep ownership checks on every container write
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..errors import MalformedUpdateError, SessionStateError, StaleIdError
from ..log.records import UpdateRecord, UpdateType
from .table import TableState, is_int_id

logger = logging.getLogger(__name__)

_batch_tokens = itertools.count(1)


class BatchContext:
    """Ownership scope for one batch of table applications.

    Attributes:
        token: Unique batch number (for logs)
        strict: Raise StaleIdError for ids missing from the table
        mutating: Treat every object as owned (in-place sessions)
        touched: Names of tables that received writes, in order

    Example:
        >>> with BatchContext() as batch:
        ...     next_table = apply_updates("Book", table, records, batch)
    """

    def __init__(self, strict: bool = False, mutating: bool = False) -> None:
        self.token = next(_batch_tokens)
        self.strict = strict
        self.mutating = mutating
        self.touched: List[str] = []
        self._owned: Dict[int, Any] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the batch has ended."""
        return self._closed

    def owns(self, obj: Any) -> bool:
        """Whether `obj` was created in this batch (and may be mutated)."""
        return self.mutating or id(obj) in self._owned

    def adopt(self, obj: Any) -> Any:
        """Mark a freshly created object as owned by this batch."""
        # Holding a reference keeps id(obj) from being reused mid-batch.
        self._owned[id(obj)] = obj
        return obj

    def close(self) -> None:
        """End the batch and release owned drafts."""
        self._owned.clear()
        self._closed = True
        logger.debug("Batch closed", extra={"batch": self.token, "touched": list(self.touched)})

    def __enter__(self) -> BatchContext:
        logger.debug("Batch opened", extra={"batch": self.token})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class _TableDraft:
    """Lazily copied working version of one table."""

    def __init__(self, name: str, table: TableState, batch: BatchContext) -> None:
        self.name = name
        self.table = table
        self.batch = batch
        self._items: Optional[List[Any]] = None
        self._items_by_id: Optional[Dict[Any, Any]] = None
        self._meta: Optional[Dict[str, Any]] = None

    @property
    def changed(self) -> bool:
        return self._items_by_id is not None or self._items is not None or self._meta is not None

    def _writable_items_by_id(self) -> Dict[Any, Any]:
        if self._items_by_id is None:
            source = self.table.items_by_id
            if self.batch.owns(source) and isinstance(source, dict):
                self._items_by_id = source
            else:
                self._items_by_id = self.batch.adopt(dict(source))
        return self._items_by_id

    def _writable_items(self) -> List[Any]:
        if self._items is None:
            self._items = list(self.table.items)
        return self._items

    def _writable_meta(self) -> Dict[str, Any]:
        if self._meta is None:
            source = self.table.meta
            if self.batch.owns(source) and isinstance(source, dict):
                self._meta = source
            else:
                self._meta = self.batch.adopt(dict(source))
        return self._meta

    def _lookup(self) -> Mapping[Any, Any]:
        if self._items_by_id is not None:
            return self._items_by_id
        return self.table.items_by_id

    def _check_stale(self, ids: Sequence[Any], update_type: UpdateType) -> List[Any]:
        lookup = self._lookup()
        stale = [entity_id for entity_id in ids if entity_id not in lookup]
        if stale:
            if self.batch.strict:
                raise StaleIdError(self.name, stale)
            logger.debug(
                "Skipping stale ids",
                extra={"table": self.name, "update_type": update_type.value, "ids": stale},
            )
        return stale

    def apply(self, record: UpdateRecord, id_attribute: str) -> None:
        if record.table != self.name:
            raise MalformedUpdateError(
                f"Record for table '{record.table}' applied to table '{self.name}'",
                table=record.table,
                update_type=record.type.value,
            )

        if record.type == UpdateType.CREATE:
            self._apply_create(record, id_attribute)
        elif record.type == UpdateType.UPDATE:
            self._apply_update(record)
        elif record.type == UpdateType.DELETE:
            self._apply_delete(record)
        else:
            raise MalformedUpdateError(
                f"Unknown update type: {record.type}", table=self.name
            )

    def _apply_create(self, record: UpdateRecord, id_attribute: str) -> None:
        if id_attribute not in record.payload:
            raise MalformedUpdateError(
                f"CREATE payload is missing id attribute '{id_attribute}'",
                table=self.name,
                update_type="CREATE",
            )
        entity_id = record.payload[id_attribute]
        items_by_id = self._writable_items_by_id()
        if entity_id not in items_by_id:
            self._writable_items().append(entity_id)
        items_by_id[entity_id] = self.batch.adopt(dict(record.payload))

        if is_int_id(entity_id):
            meta = self._writable_meta()
            current = meta.get("max_id")
            if current is None or entity_id > current:
                meta["max_id"] = entity_id

    def _apply_update(self, record: UpdateRecord) -> None:
        ids = list(record.payload["idArr"])
        patch = record.payload["mergeObj"]
        stale = set(self._check_stale(ids, UpdateType.UPDATE))

        items_by_id = None
        for entity_id in ids:
            if entity_id in stale:
                continue
            if items_by_id is None:
                items_by_id = self._writable_items_by_id()
            current = items_by_id[entity_id]
            if self.batch.owns(current) and isinstance(current, dict):
                current.update(patch)
            else:
                merged = dict(current)
                merged.update(patch)
                items_by_id[entity_id] = self.batch.adopt(merged)

    def _apply_delete(self, record: UpdateRecord) -> None:
        ids = list(record.payload)
        stale = set(self._check_stale(ids, UpdateType.DELETE))
        doomed = {entity_id for entity_id in ids if entity_id not in stale}
        if not doomed:
            return

        items_by_id = self._writable_items_by_id()
        for entity_id in doomed:
            del items_by_id[entity_id]
        self._items = [entity_id for entity_id in self._writable_items() if entity_id not in doomed]

    def commit(self) -> TableState:
        if not self.changed:
            return self.table
        return TableState(
            items=tuple(self._items) if self._items is not None else self.table.items,
            items_by_id=self._items_by_id if self._items_by_id is not None else self.table.items_by_id,
            meta=self._meta if self._meta is not None else self.table.meta,
        )


def apply_updates(
    name: str,
    table: TableState,
    records: Sequence[UpdateRecord],
    batch: BatchContext,
    id_attribute: str = "id",
) -> TableState:
    """Apply `records` to `table` in order and return the next table value.

    Args:
        name: Table name; every record must target it
        table: Current table value
        records: Records for this table, in log order
        batch: The active batch context
        id_attribute: Field holding each record's id (for CREATE)

    Returns:
        The next table value, or `table` itself when nothing changed

    Raises:
        MalformedUpdateError: If a record targets another table or is invalid
        StaleIdError: If the batch is strict and a record names missing ids
        SessionStateError: If the batch is closed
    """
    if not records:
        return table
    if batch.closed:
        raise SessionStateError("Cannot apply updates with a closed batch", state="closed")

    draft = _TableDraft(name, table, batch)
    for record in records:
        draft.apply(record, id_attribute)

    next_table = draft.commit()
    if next_table is not table:
        batch.touched.append(name)

    logger.debug(
        "Applied updates",
        extra={
            "table": name,
            "batch": batch.token,
            "records": len(records),
            "size": len(next_table),
        },
    )
    return next_table

"""
Table value for entstore.

A table is the normalized storage unit for one entity type: an ordered
tuple of ids plus an id -> raw record mapping. Tables are values: the
apply engine never mutates one, it builds the next one and shares every
untouched record with the previous one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple


@dataclass(frozen=True)
class TableState:
    """Immutable table value.

    Attributes:
        items: Ids in table order
        items_by_id: Raw record per id
        meta: Table bookkeeping (max_id: largest integer id ever inserted)
    """

    items: Tuple[Any, ...] = ()
    items_by_id: Mapping[Any, Mapping[str, Any]] = field(default_factory=dict)
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, entity_id: Any) -> bool:
        return entity_id in self.items_by_id

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        """Iterate over raw records in table order."""
        for entity_id in self.items:
            yield self.items_by_id[entity_id]

    def get(self, entity_id: Any) -> Optional[Mapping[str, Any]]:
        """Raw record for an id, or None."""
        return self.items_by_id.get(entity_id)

    @property
    def max_id(self) -> Optional[int]:
        """Largest integer id ever inserted, if any."""
        return self.meta.get("max_id")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain containers (for inspection and persistence)."""
        return {
            "items": list(self.items),
            "itemsById": {k: dict(v) for k, v in self.items_by_id.items()},
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TableState:
        """Create from plain containers."""
        return cls(
            items=tuple(data.get("items", ())),
            items_by_id=dict(data.get("itemsById", {})),
            meta=dict(data.get("meta", {})),
        )

    @classmethod
    def from_records(cls, records: Any, id_attribute: str = "id") -> TableState:
        """Build a table from an iterable of raw records."""
        items = []
        items_by_id: Dict[Any, Mapping[str, Any]] = {}
        max_id: Optional[int] = None
        for record in records:
            entity_id = record[id_attribute]
            if entity_id not in items_by_id:
                items.append(entity_id)
            items_by_id[entity_id] = dict(record)
            if is_int_id(entity_id):
                max_id = entity_id if max_id is None else max(max_id, entity_id)
        meta = {"max_id": max_id} if max_id is not None else {}
        return cls(items=tuple(items), items_by_id=items_by_id, meta=meta)


def is_int_id(entity_id: Any) -> bool:
    return isinstance(entity_id, int) and not isinstance(entity_id, bool)

"""
Update record types for the entstore update log.

An update record describes one intended mutation of one table. Records
are queued in a Transaction during a dispatch cycle and consumed exactly
once by the apply engine.

Wire shape (the interchange contract with inspection/logging tools):
    {
        "type": "UPDATE",
        "payload": {"idArr": [1, 2], "mergeObj": {"done": true}},
        "meta": {"name": "Todo"}
    }

Payload per type:
    CREATE: the record mapping (including its id)
    UPDATE: {"idArr": [ids], "mergeObj": {patch}}
    DELETE: [ids]

Invariants:
    - Records are immutable once created
    - The wire shape round-trips through to_dict()/from_dict()

How to change safely:
    - New update types need a handler in apply.ops
    - Never rename wire keys; external tooling reads them
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Sequence

from ..errors import MalformedUpdateError


class UpdateType(Enum):
    """Supported update kinds."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def from_str(cls, value: str) -> UpdateType:
        """Convert wire string to UpdateType."""
        for kind in cls:
            if kind.value == value:
                return kind
        raise MalformedUpdateError(f"Invalid update type: {value!r}", update_type=value)


@dataclass(frozen=True)
class UpdateRecord:
    """A queued mutation of one table.

    Attributes:
        type: Update kind
        payload: Kind-specific payload (see module docstring)
        table: Name of the target table
    """

    type: UpdateType
    payload: Any
    table: str

    def __post_init__(self) -> None:
        """Validate payload shape against the update type."""
        if not isinstance(self.type, UpdateType):
            raise MalformedUpdateError(
                f"Update type must be an UpdateType, got {self.type!r}", table=self.table
            )
        if not isinstance(self.table, str) or not self.table:
            raise MalformedUpdateError("Update record needs a target table name")

        if self.type == UpdateType.CREATE:
            if not isinstance(self.payload, Mapping):
                raise MalformedUpdateError(
                    "CREATE payload must be a mapping", table=self.table, update_type="CREATE"
                )
        elif self.type == UpdateType.UPDATE:
            if (
                not isinstance(self.payload, Mapping)
                or "idArr" not in self.payload
                or not isinstance(self.payload.get("mergeObj"), Mapping)
            ):
                raise MalformedUpdateError(
                    "UPDATE payload must be {'idArr': [...], 'mergeObj': {...}}",
                    table=self.table,
                    update_type="UPDATE",
                )
        elif self.type == UpdateType.DELETE:
            if isinstance(self.payload, (str, bytes, Mapping)) or not isinstance(
                self.payload, Sequence
            ):
                raise MalformedUpdateError(
                    "DELETE payload must be a list of ids", table=self.table, update_type="DELETE"
                )

    @classmethod
    def create(cls, table: str, record: Mapping[str, Any]) -> UpdateRecord:
        """Build a CREATE record."""
        return cls(UpdateType.CREATE, dict(record), table)

    @classmethod
    def update(cls, table: str, ids: Sequence[Any], patch: Mapping[str, Any]) -> UpdateRecord:
        """Build an UPDATE record merging `patch` into every id."""
        return cls(UpdateType.UPDATE, {"idArr": list(ids), "mergeObj": dict(patch)}, table)

    @classmethod
    def delete(cls, table: str, ids: Sequence[Any]) -> UpdateRecord:
        """Build a DELETE record."""
        return cls(UpdateType.DELETE, list(ids), table)

    @property
    def target_ids(self) -> List[Any]:
        """Ids this record touches."""
        if self.type == UpdateType.UPDATE:
            return list(self.payload["idArr"])
        if self.type == UpdateType.DELETE:
            return list(self.payload)
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape."""
        return {
            "type": self.type.value,
            "payload": self.payload,
            "meta": {"name": self.table},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UpdateRecord:
        """Create from the wire shape.

        Raises:
            MalformedUpdateError: If required keys are missing
        """
        missing = [k for k in ("type", "payload", "meta") if k not in data]
        if missing:
            raise MalformedUpdateError(f"Missing required keys: {missing}")
        meta = data["meta"]
        if not isinstance(meta, Mapping) or "name" not in meta:
            raise MalformedUpdateError("Update meta must contain 'name'")

        return cls(
            type=UpdateType.from_str(data["type"]),
            payload=data["payload"],
            table=meta["name"],
        )

    def __str__(self) -> str:
        return f"UpdateRecord({self.type.value} {self.table})"

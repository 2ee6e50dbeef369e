"""
Schema types for entstore.

This module provides the definitions the store is configured with:
- EntityType: one table (name, id attribute, relation fields, reducer)
- RelationField: a foreign key (`fk`) or many-to-many (`many`) field
- Generated link ("through") tables for many-to-many fields

Plain data fields are not declared; records are plain mappings. Only
relations need declaring, because they drive accessors, lookup
normalization and delete cleanup.

Invariants:
    - Table names are unique within a schema
    - A many field on table S named f is backed by link table `S` + `F`
      with fields `from_<s>_id` and `to_<t>_id`
    - EntityType values are immutable

Example:
    >>> Author = EntityType(name="Author")
    >>> Book = EntityType(
    ...     name="Book",
    ...     fields=(
    ...         fk("author", "Author", related_name="books"),
    ...         many("genres", "Genre", related_name="books"),
    ...     ),
    ... )
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple, Union

if TYPE_CHECKING:
    from ..apply.table import TableState
    from ..model import BoundModel
    from ..session import Session

Reducer = Callable[["TableState", Any, "BoundModel", "Session"], Optional["TableState"]]

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    """Convert a table name like 'BookGenres' to 'book_genres'."""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class RelationKind(Enum):
    """Supported relation kinds."""

    FK = "fk"
    MANY = "many"


@dataclass(frozen=True)
class RelationField:
    """Relation field on an entity type.

    Attributes:
        name: Field name on the source record
        kind: FK (single id) or MANY (ids stored in a link table)
        to: Target table name
        related_name: Accessor name on the target for the reverse side;
            defaults to '<source>_set'
    """

    name: str
    kind: RelationKind
    to: str
    related_name: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate relation definition."""
        if not self.name:
            raise ValueError("Relation field name cannot be empty")
        if not self.to:
            raise ValueError(f"Relation field '{self.name}' needs a target table")

    def reverse_name(self, source: str) -> str:
        """Accessor name on the target table."""
        return self.related_name or f"{snake_case(source)}_set"

    def through_name(self, source: str) -> str:
        """Link table name for a many field."""
        return f"{source}{self.name[:1].upper()}{self.name[1:]}"

    def through_fields(self, source: str) -> Tuple[str, str]:
        """(from field, to field) of the link table."""
        return f"from_{snake_case(source)}_id", f"to_{snake_case(self.to)}_id"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {"name": self.name, "kind": self.kind.value, "to": self.to}
        if self.related_name:
            result["related_name"] = self.related_name
        return result


def _target_name(to: Union[str, EntityType]) -> str:
    if isinstance(to, EntityType):
        return to.name
    return to


def fk(name: str, to: Union[str, EntityType], *, related_name: Optional[str] = None) -> RelationField:
    """Foreign key field: the record stores the target id under `name`.

    Example:
        >>> author = fk("author", "Author", related_name="books")
    """
    return RelationField(name=name, kind=RelationKind.FK, to=_target_name(to), related_name=related_name)


def many(name: str, to: Union[str, EntityType], *, related_name: Optional[str] = None) -> RelationField:
    """Many-to-many field backed by a generated link table.

    Example:
        >>> genres = many("genres", "Genre", related_name="books")
    """
    return RelationField(name=name, kind=RelationKind.MANY, to=_target_name(to), related_name=related_name)


@dataclass(frozen=True)
class EntityType:
    """Definition of one table.

    Attributes:
        name: Table name (unique within a schema)
        fields: Relation fields
        id_attribute: Record field holding the entity id
        reducer: Optional per-table reducer called as
            reducer(table_state, action, model, session). Returning None
            asks the session to apply the recorded updates instead.
        through: For generated link tables, (source table, field name)
        description: Documentation
    """

    name: str
    fields: Tuple[RelationField, ...] = dataclass_field(default_factory=tuple)
    id_attribute: str = "id"
    reducer: Optional[Reducer] = dataclass_field(default=None, compare=False)
    through: Optional[Tuple[str, str]] = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity type definition."""
        if not self.name:
            raise ValueError("Entity type name cannot be empty")
        if not self.id_attribute:
            raise ValueError(f"Entity type '{self.name}' needs an id attribute")

        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate relation field in entity type '{self.name}'")
        if self.id_attribute in names:
            raise ValueError(
                f"Id attribute '{self.id_attribute}' of '{self.name}' cannot be a relation"
            )

    @property
    def is_through(self) -> bool:
        """Whether this is a generated link table."""
        return self.through is not None

    def get_field(self, name: str) -> Optional[RelationField]:
        """Get relation field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def many_fields(self) -> Tuple[RelationField, ...]:
        """Many-to-many fields, in declaration order."""
        return tuple(f for f in self.fields if f.kind == RelationKind.MANY)

    def through_types(self) -> Tuple[EntityType, ...]:
        """Link tables generated for this type's many fields."""
        return tuple(
            EntityType(
                name=f.through_name(self.name),
                through=(self.name, f.name),
                description=f"Link table for {self.name}.{f.name}",
            )
            for f in self.many_fields()
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "name": self.name,
            "id_attribute": self.id_attribute,
            "fields": [f.to_dict() for f in self.fields],
            "has_reducer": self.reducer is not None,
        }
        if self.through:
            result["through"] = list(self.through)
        if self.description:
            result["description"] = self.description
        return result

    def __hash__(self) -> int:
        return hash(self.name)

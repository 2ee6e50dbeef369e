"""
Schema for entstore.

The Schema is the central authority for table definitions. It provides:
- Registration of entity types, in order, plus their generated link tables
- Lookup by name and reverse-relation lookup
- Schema fingerprinting and a freeze mechanism
- The default (empty) state tree
- Session factories and the composed reducer for a dispatch loop

Invariants:
    - Registration order is the order reducers run in
    - A link table is registered right after the type that declares it
    - Once frozen (at the latest when the first session is created),
      no new types can be registered
    - Table names are unique

How to change safely:
    - Register all types before creating sessions
    - Never rename a table that has persisted state

Example:
    >>> schema = Schema()
    >>> schema.register(Author, Book, Genre)
    >>> session = schema.from_(schema.get_default_state(), {"type": "ADD_BOOK"})
    >>> next_state = session.reduce()
"""

from __future__ import annotations

import hashlib
import json
import logging
from difflib import get_close_matches
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..apply.table import TableState
from ..config import SessionOptions, StoreSettings, get_settings
from ..errors import (
    DuplicateRegistrationError,
    RegistryFrozenError,
    SchemaValidationError,
    UnknownTableError,
)
from .types import EntityType, RelationField, RelationKind

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)

StateTree = Dict[str, TableState]


def _reserved_table_names() -> frozenset:
    # Lazy: session imports the model layer, which imports this package.
    from ..session import reserved_table_names

    return reserved_table_names()


class Schema:
    """Registry of entity types and entry point for sessions.

    Attributes:
        frozen: Whether the schema is frozen
        fingerprint: SHA-256 hash of the schema (computed on freeze)
        settings: Store settings used by sessions of this schema
    """

    def __init__(self, settings: Optional[StoreSettings] = None) -> None:
        """Initialize an empty, mutable schema.

        Args:
            settings: Store settings; defaults to get_settings()
        """
        self._types: Dict[str, EntityType] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self.settings = settings or get_settings()

    @property
    def frozen(self) -> bool:
        """Whether the schema is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    @property
    def names(self) -> List[str]:
        """Table names in registration order."""
        return list(self._types)

    def register(self, *entity_types: EntityType) -> None:
        """Register entity types (and their link tables) in order.

        Raises:
            RegistryFrozenError: If the schema is frozen
            DuplicateRegistrationError: If a table name is taken
        """
        for entity_type in entity_types:
            self._register_one(entity_type)
            for through in entity_type.through_types():
                self._register_one(through)

    def _register_one(self, entity_type: EntityType) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register entity type '{entity_type.name}': schema is frozen"
            )
        if entity_type.name in self._types:
            raise DuplicateRegistrationError(
                f"Entity type name '{entity_type.name}' already registered",
                name=entity_type.name,
            )

        self._types[entity_type.name] = entity_type
        logger.debug(f"Registered entity type: {entity_type.name}")

    def get_entity_type(self, name: str) -> Optional[EntityType]:
        """Get an entity type by table name."""
        return self._types.get(name)

    def require(self, name: str) -> EntityType:
        """Get an entity type by name or raise UnknownTableError."""
        entity_type = self._types.get(name)
        if entity_type is None:
            raise UnknownTableError(name, get_close_matches(name, list(self._types), n=3))
        return entity_type

    def entity_types(self) -> Iterator[EntityType]:
        """Iterate over entity types in registration order."""
        yield from self._types.values()

    def reverse_relations(self, name: str) -> List[Tuple[EntityType, RelationField]]:
        """(source type, field) pairs whose relation targets table `name`."""
        return [
            (source, f)
            for source in self._types.values()
            for f in source.fields
            if f.to == name
        ]

    def find_relation(self, name: str, accessor: str) -> Optional[Tuple[EntityType, RelationField, bool]]:
        """Resolve an accessor on table `name`.

        Returns:
            (owning type, field, is_reverse), or None when `accessor` is
            not a relation of `name`
        """
        entity_type = self._types.get(name)
        if entity_type is not None:
            forward = entity_type.get_field(accessor)
            if forward is not None:
                return entity_type, forward, False
        for source, f in self.reverse_relations(name):
            if f.reverse_name(source.name) == accessor:
                return source, f, True
        return None

    def validate_all(self) -> List[str]:
        """Validate all registered types for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        reserved = _reserved_table_names()
        for entity_type in self._types.values():
            if entity_type.name in reserved:
                errors.append(
                    f"Table name '{entity_type.name}' shadows a Session attribute; "
                    "choose another name"
                )

            for f in entity_type.fields:
                if f.to not in self._types:
                    errors.append(
                        f"Field '{f.name}' in entity type '{entity_type.name}' "
                        f"references unknown table '{f.to}'"
                    )
                    continue

                target = self._types[f.to]
                reverse = f.reverse_name(entity_type.name)
                if target.get_field(reverse) is not None:
                    errors.append(
                        f"Reverse accessor '{reverse}' of '{entity_type.name}.{f.name}' "
                        f"clashes with a field of '{target.name}'"
                    )

            if entity_type.through is not None:
                source_name, field_name = entity_type.through
                source = self._types.get(source_name)
                field_def = source.get_field(field_name) if source else None
                if field_def is None or field_def.kind != RelationKind.MANY:
                    errors.append(
                        f"Link table '{entity_type.name}' has no many field "
                        f"'{source_name}.{field_name}'"
                    )
        return errors

    def freeze(self) -> str:
        """Freeze the schema and compute its fingerprint.

        Returns:
            Schema fingerprint

        Raises:
            RegistryFrozenError: If already frozen
            SchemaValidationError: If validate_all() reports errors
        """
        if self._frozen:
            raise RegistryFrozenError("Schema is already frozen")

        errors = self.validate_all()
        if errors:
            raise SchemaValidationError(errors)

        self._fingerprint = self._compute_fingerprint()
        self._frozen = True
        logger.info(
            f"Schema frozen with {len(self._types)} tables, fingerprint={self._fingerprint}"
        )
        return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint over the canonical JSON form."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert to dictionary (tables in registration order)."""
        return {"tables": [t.to_dict() for t in self._types.values()]}

    # State and sessions

    def get_default_state(self) -> StateTree:
        """Empty state tree: one empty table per registered type."""
        return {name: TableState() for name in self._types}

    def from_(self, state: Optional[StateTree] = None, action: Any = None) -> Session:
        """Start a session (one dispatch cycle) over `state`.

        Args:
            state: Current state tree; defaults to get_default_state()
            action: Action passed to the per-table reducers
        """
        from ..session import Session

        if not self._frozen:
            self.freeze()
        return Session(self, state, action)

    def with_mutations(self, state: StateTree) -> Session:
        """Start a session that applies every update to `state` in place."""
        from ..session import Session

        if not self._frozen:
            self.freeze()
        return Session(self, state, options=SessionOptions(with_mutations=True))

    def reducer(self) -> Callable[[Optional[StateTree], Any], StateTree]:
        """Reducer for a dispatch loop: (state, action) -> next state.

        Example:
            >>> reducer = schema.reducer()
            >>> state = reducer(None, {"type": "INIT"})
        """

        def schema_reducer(state: Optional[StateTree], action: Any) -> StateTree:
            return self.from_(state, action).reduce()

        return schema_reducer

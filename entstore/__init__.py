"""
entstore - an in-memory normalized entity store.

entstore keeps entities as normalized tables inside an immutable state
tree and computes the next tree from a batch of recorded updates:

    >>> from entstore import EntityType, Schema, fk
    >>> schema = Schema()
    >>> schema.register(
    ...     EntityType(name="Author"),
    ...     EntityType(name="Book", fields=(fk("author", "Author", related_name="books"),)),
    ... )
    >>> session = schema.from_(schema.get_default_state())
    >>> author = session.Author.create({"name": "Herbert"})
    >>> session.Book.create({"title": "Dune", "author": author})
    <Entity Book id=1>
    >>> state = session.get_next_state()

Components:
    - schema: entity types, relations and the Schema registry
    - session: one dispatch cycle (queries, recorded updates, next state)
    - query: QuerySet and filter predicates
    - log: update records and the per-cycle Transaction
    - apply: copy-on-write table updates
"""

from ._version import __version__
from .apply import BatchContext, TableState, apply_updates
from .config import (
    NextStateOptions,
    SessionOptions,
    StoreSettings,
    get_settings,
    reset_settings,
    setup_logging,
)
from .errors import (
    DuplicateRegistrationError,
    EntStoreError,
    InvalidOptionsError,
    InvalidPredicateError,
    MalformedUpdateError,
    RegistryFrozenError,
    SchemaValidationError,
    SessionStateError,
    StaleIdError,
    UnknownTableError,
)
from .log import Transaction, UpdateRecord, UpdateType
from .model import BoundModel, Entity, RelatedQuerySet
from .query import FieldMatch, Predicate, QuerySet, resolve_predicate
from .schema import EntityType, RelationField, RelationKind, Schema, StateTree, fk, many
from .session import Session, SessionState

__all__ = [
    "__version__",
    # Schema
    "Schema",
    "StateTree",
    "EntityType",
    "RelationField",
    "RelationKind",
    "fk",
    "many",
    # Session and models
    "Session",
    "SessionState",
    "BoundModel",
    "Entity",
    "RelatedQuerySet",
    # Query
    "QuerySet",
    "Predicate",
    "FieldMatch",
    "resolve_predicate",
    # Log and apply
    "UpdateRecord",
    "UpdateType",
    "Transaction",
    "TableState",
    "BatchContext",
    "apply_updates",
    # Config
    "StoreSettings",
    "SessionOptions",
    "NextStateOptions",
    "get_settings",
    "reset_settings",
    "setup_logging",
    # Errors
    "EntStoreError",
    "InvalidPredicateError",
    "MalformedUpdateError",
    "StaleIdError",
    "UnknownTableError",
    "SessionStateError",
    "RegistryFrozenError",
    "DuplicateRegistrationError",
    "InvalidOptionsError",
    "SchemaValidationError",
]

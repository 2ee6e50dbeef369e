"""
Session: one dispatch cycle over a state tree.

A Session binds every registered table to itself (one BoundModel per
table, in registration order), collects the updates user code records
through them, and turns the log into the next state tree.

Lifecycle:
    CREATED -> ACTIVE (first table access or recorded update)
            -> CLOSED (after get_next_state)

get_next_state():
    1. In-place sessions return the live tree (updates were applied as
       they were recorded)
    2. Per-table reducers run in registration order when requested; a
       reducer returning None falls back to applying the table's updates
    3. Tables whose updates nobody consumed are applied on top of the
       tables assembled so far, in registration order
    4. The log is closed and replaced by a fresh one

Invariants:
    - Reads see the state the session was created with
    - The previous tree is never mutated; untouched tables are shared, and
      the previous tree itself is returned when no table changed
    - One BatchContext per get_next_state() call; re-entry is an error

How to change safely:
    - Keep reducer order equal to schema registration order
    - Keep the batch closed in a finally block; drafts must not leak
      into the next cycle
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .apply.ops import BatchContext
from .apply.table import TableState
from .config import NextStateOptions, SessionOptions
from .errors import MalformedUpdateError, SessionStateError
from .log.records import UpdateRecord
from .log.transaction import Transaction
from .model import BoundModel

if TYPE_CHECKING:
    from .schema.registry import Schema, StateTree

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""

    CREATED = "created"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    """Query and update scope for one dispatch cycle.

    Example:
        >>> session = schema.from_(state, {"type": "RATE", "id": 2})
        >>> session.Book.with_id(2).update({"rating": 5})
        >>> next_state = session.get_next_state()
    """

    def __init__(
        self,
        schema: Schema,
        state: Optional[StateTree] = None,
        action: Any = None,
        options: Optional[SessionOptions] = None,
    ) -> None:
        """Create a session.

        Args:
            schema: Frozen schema the tables come from
            state: Current state tree; defaults to the schema's default state
            action: Action handed to the per-table reducers
            options: Session options (in-place mutation)
        """
        self.schema = schema
        self.state = state if state is not None else schema.get_default_state()
        self.action = action
        self.options = options or SessionOptions()

        self._transaction = Transaction()
        self._model_data: Dict[str, Dict[str, Any]] = {}
        self._batch: Optional[BatchContext] = None
        self._lifecycle = SessionState.CREATED

        self._mutation_batch: Optional[BatchContext] = None
        if self.options.with_mutations:
            self._mutation_batch = BatchContext(
                strict=schema.settings.strict_updates, mutating=True
            )

        self._bound: Dict[str, BoundModel] = {
            entity_type.name: BoundModel(entity_type, self)
            for entity_type in schema.entity_types()
        }

    # Table access

    @property
    def models(self) -> List[BoundModel]:
        """Bound models in registration order."""
        return list(self._bound.values())

    def model(self, name: str) -> BoundModel:
        """Bound model for table `name`.

        Raises:
            UnknownTableError: If the schema has no such table
        """
        bound = self._bound.get(name)
        if bound is None:
            self.schema.require(name)
        return self._bound[name]

    def __getitem__(self, name: str) -> BoundModel:
        return self.model(name)

    def __getattr__(self, name: str) -> BoundModel:
        if name.startswith("_"):
            raise AttributeError(name)
        bound = self.__dict__.get("_bound", {}).get(name)
        if bound is None:
            raise AttributeError(f"Session has no table '{name}'")
        return bound

    def __contains__(self, name: object) -> bool:
        return name in self._bound

    def get_state(self, name: str) -> TableState:
        """Current value of table `name` (empty if the tree lacks it)."""
        table = self.state.get(name)
        return table if table is not None else TableState()

    # Per-table session data

    def get_data_for_model(self, name: str) -> Dict[str, Any]:
        """Mutable per-table scratch data (accessed flag, id counter)."""
        return self._model_data.setdefault(name, {})

    def mark_accessed(self, name: str) -> None:
        """Record that table `name` was read in this session."""
        self.get_data_for_model(name)["accessed"] = True
        self._activate()

    @property
    def accessed_models(self) -> List[str]:
        """Names of tables read in this session, in registration order."""
        return [
            name for name in self._bound if self._model_data.get(name, {}).get("accessed")
        ]

    def _activate(self) -> None:
        if self._lifecycle == SessionState.CREATED:
            self._lifecycle = SessionState.ACTIVE

    # Update log

    @property
    def transaction(self) -> Transaction:
        """The current update log."""
        return self._transaction

    @property
    def batch(self) -> Optional[BatchContext]:
        """The batch of the running get_next_state() call, if any."""
        return self._batch

    @property
    def lifecycle(self) -> SessionState:
        return self._lifecycle

    @property
    def with_mutations(self) -> bool:
        """Whether updates are applied to the live tree as they are recorded."""
        return self.options.with_mutations

    def add_update(self, record: UpdateRecord) -> None:
        """Record an update (or apply it at once in an in-place session).

        Raises:
            MalformedUpdateError: If record is not an UpdateRecord
            UnknownTableError: If record targets an unregistered table
        """
        if not isinstance(record, UpdateRecord):
            raise MalformedUpdateError(f"Expected UpdateRecord, got {type(record).__name__}")
        model = self.model(record.table)
        self._activate()

        if self._mutation_batch is not None:
            self.state[record.table] = model.update_reducer(
                self._mutation_batch, self.get_state(record.table), record
            )
            return
        self._transaction.add_update(record)

    def get_updates_for(self, name: str) -> List[UpdateRecord]:
        """Records logged for table `name`, in order."""
        return self._transaction.get_updates_for(name)

    @property
    def updates(self) -> List[UpdateRecord]:
        """All logged records, in order."""
        return self._transaction.updates

    # Next state

    def get_next_state(self, options: Optional[NextStateOptions] = None) -> StateTree:
        """Compute the next state tree from the recorded updates.

        Args:
            options: run_reducers defaults to "only if the session has an action"

        Returns:
            The next state tree; the previous tree object when nothing changed

        Raises:
            SessionStateError: If called from inside a reducer of this session
        """
        options = options or NextStateOptions()
        if self._mutation_batch is not None:
            return self.state

        if self._batch is not None:
            raise SessionStateError(
                "get_next_state() called while it is already running", state=self._lifecycle.value
            )
        if self._lifecycle == SessionState.CLOSED and self.schema.settings.warn_on_session_reuse:
            logger.warning(
                "Session reused after get_next_state()",
                extra={"pending": len(self._transaction)},
            )

        prev_state = self.state
        run_reducers = options.resolve_run_reducers(self.action is not None)
        tables: Dict[str, TableState] = {}

        self._batch = BatchContext(strict=self.schema.settings.strict_updates)
        try:
            if run_reducers:
                for name, model in self._bound.items():
                    prev_table = self.get_state(name)
                    next_table = model.reducer(prev_table, self.action, self)
                    if next_table is None:
                        next_table = model.get_next_state(prev_table)
                    tables[name] = next_table

            unapplied = self._transaction.get_unapplied_updates_by_model()
            for name, model in self._bound.items():
                if name in unapplied:
                    current = tables.get(name, self.get_state(name))
                    tables[name] = model.get_next_state(current)
            touched = list(self._batch.touched)
        finally:
            self._batch.close()
            self._batch = None

        changed = {name: t for name, t in tables.items() if t is not prev_state.get(name)}
        if changed:
            next_state = dict(prev_state)
            next_state.update(changed)
        else:
            next_state = prev_state

        self._transaction.close()
        logger.debug(
            "Computed next state",
            extra={
                "updates": len(self._transaction),
                "reducers": run_reducers,
                "touched": touched,
                "changed": list(changed),
            },
        )
        self._transaction = Transaction()
        self._lifecycle = SessionState.CLOSED
        return next_state

    def reduce(self) -> StateTree:
        """Run every reducer and return the next state tree."""
        return self.get_next_state(NextStateOptions(run_reducers=True))

    def __repr__(self) -> str:
        return f"<Session tables={len(self._bound)} state={self._lifecycle.value}>"


INSTANCE_ATTRIBUTES = frozenset({"schema", "state", "action", "options"})


def reserved_table_names() -> frozenset:
    """Names a table must not take: attribute access on a Session resolves them first."""
    return INSTANCE_ATTRIBUTES | {name for name in dir(Session) if not name.startswith("_")}

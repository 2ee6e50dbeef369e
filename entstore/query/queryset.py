"""
QuerySet: a chainable, immutable view over ids of one table.

A QuerySet keeps an ordered tuple of ids and the bound model they come
from. It materializes elements lazily, either as raw records (`with_refs`)
or as wrapped entities (the default), and turns bulk mutation intent into
update records instead of touching the table.

Invariants:
    - A QuerySet never mutates its ids or view flag; transforms return new ones
    - filter/exclude/order_by preserve relative order of surviving ids
    - update() and delete() only append to the session's update log

How to change safely:
    - Keep field matches on raw records and callables on the view mode
    - delete() must record the removal before running the per-entity
      cleanup hooks; the hooks append follow-up records after it
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional, Sequence, Union

from ..log.records import UpdateRecord
from .predicates import FieldMatch, resolve_predicate

if TYPE_CHECKING:
    from ..model import BoundModel

logger = logging.getLogger(__name__)

SortKey = Union[str, Callable[[Any], Any]]
SortOrder = Union[str, bool]


def _is_descending(order: SortOrder) -> bool:
    if isinstance(order, bool):
        return not order
    if isinstance(order, str) and order.lower() in ("asc", "desc"):
        return order.lower() == "desc"
    raise ValueError(f"Invalid sort order {order!r}: expected 'asc', 'desc', True or False")


def _none_last(value: Any) -> tuple:
    return (value is None, value)


class QuerySet:
    """Immutable, chainable handle over an ordered list of ids.

    Example:
        >>> books = session.Book.all()
        >>> books.filter({"genre": "scifi"}).order_by(["rating"], ["desc"]).first()
        <Entity Book id=2>
        >>> books.filter(lambda b: b.rating > 3).update({"featured": True})
    """

    def __init__(
        self,
        model: BoundModel,
        ids: Sequence[Any],
        with_refs: bool = False,
    ) -> None:
        """Create a QuerySet.

        Args:
            model: Bound model of the table the ids belong to
            ids: Ids in this QuerySet, in order
            with_refs: Materialize raw records instead of wrapped entities
        """
        self._model = model
        self._ids = tuple(ids)
        self._with_refs = with_refs

    def _new(self, ids: Sequence[Any], with_refs: Optional[bool] = None) -> QuerySet:
        if with_refs is None:
            with_refs = self._with_refs
        return type(self)(self._model, ids, with_refs=with_refs)

    @property
    def model(self) -> BoundModel:
        """Bound model of the owning table."""
        return self._model

    @property
    def ids(self) -> tuple:
        """Ids in this QuerySet."""
        return self._ids

    @property
    def is_ref_view(self) -> bool:
        """Whether elements materialize as raw records."""
        return self._with_refs

    # View mode

    def with_refs(self) -> QuerySet:
        """Same ids, materialized as raw records."""
        if self._with_refs:
            return self
        return self._new(self._ids, with_refs=True)

    def ref(self) -> QuerySet:
        """Alias for with_refs()."""
        return self.with_refs()

    def with_models(self) -> QuerySet:
        """Same ids, materialized as wrapped entities."""
        if not self._with_refs:
            return self
        return self._new(self._ids, with_refs=False)

    # Materialization

    def to_ref_array(self) -> List[Any]:
        """Raw records for every id, regardless of view mode."""
        return [self._model.access_id(entity_id) for entity_id in self._ids]

    def to_model_array(self) -> List[Any]:
        """Wrapped entities for every id, regardless of view mode."""
        return [self._model.with_id(entity_id) for entity_id in self._ids]

    def _materialize(self) -> List[Any]:
        if self._with_refs:
            return self.to_ref_array()
        return self.to_model_array()

    def count(self) -> int:
        """Number of ids."""
        return len(self._ids)

    def exists(self) -> bool:
        """Whether there is at least one id."""
        return bool(self._ids)

    def at(self, index: int) -> Any:
        """Element at `index` in the view mode, or None when out of range."""
        if not 0 <= index < len(self._ids):
            return None
        entity_id = self._ids[index]
        if self._with_refs:
            return self._model.access_id(entity_id)
        return self._model.with_id(entity_id)

    def first(self) -> Any:
        """First element, or None."""
        return self.at(0)

    def last(self) -> Any:
        """Last element, or None."""
        return self.at(len(self._ids) - 1)

    def all(self) -> QuerySet:
        """A new QuerySet with the same ids."""
        return self._new(self._ids)

    def map(self, func: Callable[[Any], Any]) -> List[Any]:
        """Apply `func` to every element in the view mode."""
        return [func(element) for element in self._materialize()]

    def for_each(self, func: Callable[[Any], Any]) -> None:
        """Call `func` on every element in the view mode."""
        for element in self._materialize():
            func(element)

    # Filtering and ordering

    def filter(self, lookup: Any) -> QuerySet:
        """Ids whose element matches `lookup`.

        Args:
            lookup: Field mapping (matched on raw records) or a callable
                (called with elements in the current view mode)

        Raises:
            InvalidPredicateError: If lookup is neither
        """
        return self._filter_or_exclude(lookup, exclude=False)

    def exclude(self, lookup: Any) -> QuerySet:
        """Ids whose element does not match `lookup`."""
        return self._filter_or_exclude(lookup, exclude=True)

    def _filter_or_exclude(self, lookup: Any, exclude: bool) -> QuerySet:
        predicate = resolve_predicate(lookup)

        if isinstance(predicate, FieldMatch) or self._with_refs:
            elements = self.to_ref_array()
        else:
            elements = self.to_model_array()

        kept = [
            entity_id
            for entity_id, element in zip(self._ids, elements)
            if element is not None and predicate(element) != exclude
        ]
        return self._new(kept, with_refs=False)

    def order_by(
        self,
        keys: Sequence[SortKey],
        orders: Optional[Union[SortOrder, Sequence[SortOrder]]] = None,
    ) -> QuerySet:
        """Ids sorted by `keys`.

        Args:
            keys: Field names or callables, most significant first. A
                callable gets the wrapped entity unless the QuerySet is in
                ref view, in which case it gets the raw record.
            orders: 'asc'/'desc' (or True/False) per key; missing entries
                default to ascending. A bare order applies to the first key.

        Returns:
            A new QuerySet in model view. The sort is stable.
        """
        if isinstance(keys, (str, bytes)) or callable(keys):
            keys = [keys]
        if isinstance(orders, (str, bool)):
            orders = [orders]
        orders = list(orders or [])
        descending = [
            _is_descending(orders[i]) if i < len(orders) else False for i in range(len(keys))
        ]

        records = dict(zip(self._ids, self.to_ref_array()))
        ids = [entity_id for entity_id in self._ids if records[entity_id] is not None]

        # Stable sorts applied from the least significant key up.
        for key, desc in reversed(list(zip(keys, descending))):
            key_func = self._sort_key(key, records)
            ids.sort(key=lambda entity_id: _none_last(key_func(entity_id)), reverse=desc)

        return self._new(ids, with_refs=False)

    def _sort_key(self, key: SortKey, records: dict) -> Callable[[Any], Any]:
        if callable(key):
            if self._with_refs:
                return lambda entity_id: key(records[entity_id])
            return lambda entity_id: key(self._model.with_id(entity_id))
        if isinstance(key, str):
            return lambda entity_id: records[entity_id].get(key)
        raise TypeError(f"Sort key must be a field name or a callable, got {type(key).__name__}")

    # Recorded mutations

    def update(self, patch: dict) -> None:
        """Record a merge of `patch` into every entity in this QuerySet."""
        self._model.add_update(UpdateRecord.update(self._model.name, self._ids, patch))

    def delete(self) -> None:
        """Record the removal of every entity in this QuerySet."""
        entities = self.to_model_array()
        self._model.add_update(UpdateRecord.delete(self._model.name, self._ids))
        logger.debug("Delete recorded", extra={"table": self._model.name, "ids": list(self._ids)})

        for entity in entities:
            if entity is not None:
                entity._on_delete()

    # Python protocol

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._materialize())

    def __bool__(self) -> bool:
        return bool(self._ids)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QuerySet):
            return NotImplemented
        return (
            self._model.name == other._model.name
            and self._ids == other._ids
            and self._with_refs == other._with_refs
        )

    def __hash__(self) -> int:
        return hash((self._model.name, self._ids, self._with_refs))

    def __repr__(self) -> str:
        view = "refs" if self._with_refs else "models"
        return f"<QuerySet {self._model.name} ids={list(self._ids)} view={view}>"

"""
Bound models and wrapped entities for entstore.

A BoundModel is the binding record {entity type, session}: the per-table
interface a session hands to user code. It reads the session's state,
records updates into the session's log, and exposes the QuerySet methods
directly (`session.Book.filter(...)` is `session.Book.all().filter(...)`).

An Entity wraps one raw record with its bound model. It resolves relation
accessors and records its own updates and deletion.

Invariants:
    - Reads go through the session state as of session creation; recorded
      updates become visible only in the next state
    - Missing ids yield None, never an exception
    - Deleting an entity records the DELETE before any link-table cleanup
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from .apply.ops import BatchContext, apply_updates
from .apply.table import TableState, is_int_id
from .log.records import UpdateRecord, UpdateType
from .query.predicates import normalize_value
from .query.queryset import QuerySet
from .schema.types import EntityType, RelationField, RelationKind

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

QUERYSET_METHODS = frozenset(
    {
        "filter",
        "exclude",
        "order_by",
        "count",
        "exists",
        "at",
        "first",
        "last",
        "map",
        "for_each",
        "update",
        "delete",
        "with_refs",
        "with_models",
        "ref",
        "to_ref_array",
        "to_model_array",
    }
)


@dataclass(frozen=True, eq=False)
class BoundModel:
    """One table's query/update interface within one session.

    Attributes:
        entity_type: The table definition
        session: The owning session
    """

    entity_type: EntityType
    session: Session

    @property
    def name(self) -> str:
        """Table name."""
        return self.entity_type.name

    @property
    def id_attribute(self) -> str:
        """Record field holding the entity id."""
        return self.entity_type.id_attribute

    def _table(self) -> TableState:
        return self.session.get_state(self.name)

    # Reads

    def access_id(self, entity_id: Any) -> Optional[Mapping[str, Any]]:
        """Raw record for `entity_id`, or None."""
        self.session.mark_accessed(self.name)
        return self._table().get(entity_id)

    def access_ids(self) -> tuple:
        """All ids in table order."""
        self.session.mark_accessed(self.name)
        return self._table().items

    def with_id(self, entity_id: Any) -> Optional[Entity]:
        """Wrapped entity for `entity_id`, or None."""
        record = self.access_id(entity_id)
        if record is None:
            return None
        return Entity(self, record)

    def has_id(self, entity_id: Any) -> bool:
        """Whether `entity_id` exists in the table."""
        return self.access_id(entity_id) is not None

    def all(self) -> QuerySet:
        """QuerySet over every id in the table."""
        return QuerySet(self, self.access_ids())

    def __getattr__(self, name: str) -> Any:
        if name in QUERYSET_METHODS:
            return getattr(self.all(), name)
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    # Recorded mutations

    def add_update(self, record: UpdateRecord) -> None:
        """Route an update record to the owning session."""
        self.session.add_update(record)

    def next_id(self) -> int:
        """Reserve the next integer id for this table in this session."""
        counter = self._id_counter()
        counter["max_id"] += 1
        return counter["max_id"]

    def _id_counter(self) -> Dict[str, Any]:
        data = self.session.get_data_for_model(self.name)
        if "max_id" not in data:
            table = self._table()
            candidates = [entity_id for entity_id in table.items if is_int_id(entity_id)]
            if table.max_id is not None:
                candidates.append(table.max_id)
            data["max_id"] = max(candidates, default=0)
        return data

    def _reserve_id(self, entity_id: Any) -> None:
        if is_int_id(entity_id):
            counter = self._id_counter()
            counter["max_id"] = max(counter["max_id"], entity_id)

    def create(self, props: Mapping[str, Any]) -> Entity:
        """Record the creation of an entity and return it wrapped.

        Many-to-many values (ids or entities) become link-table rows.
        A missing id is assigned from the table's integer id sequence.
        """
        fields = dict(props)
        many_values: Dict[str, Any] = {}
        for relation in self.entity_type.fields:
            if relation.name not in fields:
                continue
            if relation.kind == RelationKind.MANY:
                many_values[relation.name] = fields.pop(relation.name)
            else:
                fields[relation.name] = normalize_value(fields[relation.name])

        if self.id_attribute in fields:
            self._reserve_id(fields[self.id_attribute])
        else:
            fields[self.id_attribute] = self.next_id()
            logger.debug(
                "Assigned id",
                extra={"table": self.name, "entity_id": fields[self.id_attribute]},
            )

        self.add_update(UpdateRecord.create(self.name, fields))
        entity = Entity(self, fields)

        for field_name, values in many_values.items():
            getattr(entity, field_name).add(*values)
        return entity

    def upsert(self, props: Mapping[str, Any]) -> Entity:
        """Update the entity with the given id if it exists, else create it."""
        entity_id = props.get(self.id_attribute)
        existing = self.with_id(entity_id) if entity_id is not None else None
        if existing is None:
            return self.create(props)
        patch = {k: v for k, v in props.items() if k != self.id_attribute}
        existing.update(patch)
        return existing

    # Reduction

    def reducer(self, table_state: TableState, action: Any, session: Session) -> Optional[TableState]:
        """Run the table's reducer; None means "apply the recorded updates"."""
        if self.entity_type.reducer is None:
            return None
        return self.entity_type.reducer(table_state, action, self, session)

    def get_next_state(self, table_state: Optional[TableState] = None) -> TableState:
        """Apply this table's pending updates and mark them applied.

        Args:
            table_state: Table to apply onto; defaults to the session state
        """
        if table_state is None:
            table_state = self._table()

        tx = self.session.transaction
        records = tx.get_pending_updates_for(self.name)
        if not records:
            return table_state

        batch = self.session.batch
        if batch is None:
            with BatchContext(strict=self.session.schema.settings.strict_updates) as own_batch:
                next_state = apply_updates(
                    self.name, table_state, records, own_batch, self.id_attribute
                )
        else:
            next_state = apply_updates(self.name, table_state, records, batch, self.id_attribute)

        tx.mark_applied(self.name)
        return next_state

    def update_reducer(
        self, batch: Optional[BatchContext], table_state: TableState, record: UpdateRecord
    ) -> TableState:
        """Apply a single record (the in-place session path)."""
        if batch is None:
            with BatchContext(strict=self.session.schema.settings.strict_updates) as own_batch:
                return apply_updates(self.name, table_state, [record], own_batch, self.id_attribute)
        return apply_updates(self.name, table_state, [record], batch, self.id_attribute)

    def __repr__(self) -> str:
        return f"<BoundModel {self.name}>"


class RelatedQuerySet(QuerySet):
    """QuerySet over one side of a many-to-many link, with link management.

    `own_field` is the link-table column holding the owner's id and
    `other_field` the column holding ids of this QuerySet's table.
    """

    def __init__(
        self,
        model: BoundModel,
        ids: Iterable[Any],
        through: BoundModel,
        own_field: str,
        other_field: str,
        own_id: Any,
    ) -> None:
        super().__init__(model, list(ids))
        self._through = through
        self._own_field = own_field
        self._other_field = other_field
        self._own_id = own_id

    def _new(self, ids, with_refs=None) -> QuerySet:
        # Derived querysets are plain; link management stays on the accessor.
        if with_refs is None:
            with_refs = self._with_refs
        return QuerySet(self._model, ids, with_refs=with_refs)

    def _links(self) -> QuerySet:
        return self._through.filter({self._own_field: self._own_id})

    def _current_links(self) -> Dict[Any, Any]:
        """Link row id -> linked id, with this session's recorded link changes folded in."""
        id_attribute = self._through.id_attribute
        links = {row[id_attribute]: row[self._other_field] for row in self._links().to_ref_array()}

        for record in self._through.session.get_updates_for(self._through.name):
            if record.type == UpdateType.CREATE:
                row = record.payload
                if row.get(self._own_field) == self._own_id:
                    links[row[id_attribute]] = row.get(self._other_field)
                else:
                    links.pop(row.get(id_attribute), None)
            elif record.type == UpdateType.UPDATE:
                patch = record.payload["mergeObj"]
                for row_id in record.payload["idArr"]:
                    if row_id not in links:
                        continue
                    if self._own_field in patch and patch[self._own_field] != self._own_id:
                        del links[row_id]
                    elif self._other_field in patch:
                        links[row_id] = patch[self._other_field]
            elif record.type == UpdateType.DELETE:
                for row_id in record.payload:
                    links.pop(row_id, None)
        return links

    def _delete_rows(self, row_ids: List[Any]) -> None:
        if row_ids:
            self._through.add_update(UpdateRecord.delete(self._through.name, row_ids))

    def add(self, *targets: Any) -> None:
        """Record link rows to `targets` (ids or entities) not yet linked."""
        linked = set(self._current_links().values())
        for target in targets:
            target_id = normalize_value(target)
            if target_id in linked:
                continue
            self._through.create({self._own_field: self._own_id, self._other_field: target_id})
            linked.add(target_id)

    def remove(self, *targets: Any) -> None:
        """Record removal of the link rows to `targets`."""
        target_ids = {normalize_value(t) for t in targets}
        self._delete_rows(
            [row_id for row_id, other in self._current_links().items() if other in target_ids]
        )

    def clear(self) -> None:
        """Record removal of every link row of the owner."""
        self._delete_rows(list(self._current_links()))

    def set(self, targets: Iterable[Any]) -> None:
        """Make the link set exactly `targets`."""
        wanted = [normalize_value(t) for t in targets]
        keep = set(wanted)
        self._delete_rows(
            [row_id for row_id, other in self._current_links().items() if other not in keep]
        )
        self.add(*wanted)


class Entity:
    """A raw record wrapped with its bound model.

    Field values and relations are attributes:

        >>> book = session.Book.with_id(1)
        >>> book.title
        'Dune'
        >>> book.author          # fk -> Entity or None
        <Entity Author id=7>
        >>> book.genres          # many -> RelatedQuerySet
        <QuerySet Genre ids=[1, 3] view=models>
    """

    def __init__(self, model: BoundModel, fields: Mapping[str, Any]) -> None:
        self._model = model
        self._fields = dict(fields)

    @property
    def model(self) -> BoundModel:
        return self._model

    @property
    def ref(self) -> Mapping[str, Any]:
        """Raw record in the session state (or the pending fields if not stored yet)."""
        record = self._model.access_id(self.get_id())
        return record if record is not None else dict(self._fields)

    def get_id(self) -> Any:
        return self._fields[self._model.id_attribute]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)

        relation = self._model.session.schema.find_relation(self._model.name, name)
        if relation is not None:
            owner, field_def, is_reverse = relation
            return self._resolve_relation(owner, field_def, is_reverse)

        if name in self._fields:
            return self._fields[name]
        raise AttributeError(f"'{self._model.name}' entity has no field '{name}'")

    def _resolve_relation(self, owner: EntityType, field_def: RelationField, is_reverse: bool) -> Any:
        session = self._model.session

        if field_def.kind == RelationKind.FK:
            if is_reverse:
                return session.model(owner.name).filter({field_def.name: self.get_id()})
            return session.model(field_def.to).with_id(self._fields.get(field_def.name))

        through = session.model(field_def.through_name(owner.name))
        from_field, to_field = field_def.through_fields(owner.name)
        if is_reverse:
            own_field, other_field, target = to_field, from_field, owner.name
        else:
            own_field, other_field, target = from_field, to_field, field_def.to

        rows = through.filter({own_field: self.get_id()}).to_ref_array()
        return RelatedQuerySet(
            session.model(target),
            [row[other_field] for row in rows],
            through=through,
            own_field=own_field,
            other_field=other_field,
            own_id=self.get_id(),
        )

    def update(self, patch: Mapping[str, Any]) -> None:
        """Record a merge of `patch` into this entity."""
        patch = dict(patch)
        for relation in self._model.entity_type.fields:
            if relation.name not in patch:
                continue
            if relation.kind == RelationKind.MANY:
                getattr(self, relation.name).set(patch.pop(relation.name))
            else:
                patch[relation.name] = normalize_value(patch[relation.name])

        if patch:
            self._fields.update(patch)
            self._model.add_update(UpdateRecord.update(self._model.name, [self.get_id()], patch))

    def delete(self) -> None:
        """Record the removal of this entity, then clean up its links."""
        self._model.add_update(UpdateRecord.delete(self._model.name, [self.get_id()]))
        self._on_delete()

    def _on_delete(self) -> None:
        """Record removal of link-table rows referencing this entity."""
        schema = self._model.session.schema
        name = self._model.name
        related: List[RelatedQuerySet] = [
            getattr(self, f.name) for f in self._model.entity_type.many_fields()
        ]
        for source, f in schema.reverse_relations(name):
            if f.kind == RelationKind.MANY:
                related.append(self._resolve_relation(source, f, is_reverse=True))

        for manager in related:
            manager.clear()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return self._model.name == other._model.name and self.get_id() == other.get_id()

    def __hash__(self) -> int:
        return hash((self._model.name, self.get_id()))

    def __repr__(self) -> str:
        return f"<Entity {self._model.name} id={self.get_id()!r}>"

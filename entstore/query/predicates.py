"""
Predicates for QuerySet.filter() and QuerySet.exclude().

A lookup is resolved once, at the call boundary, into one of two variants:
- Predicate(fn): a boolean test over an element in the QuerySet's view mode
- FieldMatch(fields): field equality over raw records

Mapping values that are wrapped entities are normalized to their id, so
`Book.filter({"author": some_author})` matches the raw `author` field.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, Union

from ..errors import InvalidPredicateError


def normalize_value(value: Any) -> Any:
    """Return the id of a wrapped entity, or the value unchanged."""
    get_id = getattr(value, "get_id", None)
    if callable(get_id):
        return get_id()
    return value


@dataclass(frozen=True)
class Predicate:
    """Boolean test over an element (raw record or wrapped entity)."""

    fn: Callable[[Any], Any]

    def __call__(self, element: Any) -> bool:
        return bool(self.fn(element))


@dataclass(frozen=True)
class FieldMatch:
    """Equality match over raw record fields."""

    fields: Mapping[str, Any]

    def __call__(self, record: Mapping[str, Any]) -> bool:
        for key, expected in self.fields.items():
            if key not in record or record[key] != expected:
                return False
        return True


Lookup = Union[Predicate, FieldMatch]


def resolve_predicate(lookup: Any) -> Lookup:
    """Resolve a user lookup into a Predicate or FieldMatch.

    Args:
        lookup: A callable, a mapping, or an already resolved variant

    Returns:
        The resolved variant

    Raises:
        InvalidPredicateError: If lookup is none of the above
    """
    if isinstance(lookup, (Predicate, FieldMatch)):
        return lookup
    if isinstance(lookup, Mapping):
        return FieldMatch(MappingProxyType({k: normalize_value(v) for k, v in lookup.items()}))
    if callable(lookup):
        return Predicate(lookup)
    raise InvalidPredicateError(lookup)

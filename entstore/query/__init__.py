"""
Query layer for entstore.

- QuerySet: chainable, immutable view over ids of one table
- Predicate / FieldMatch: resolved lookups for filter() and exclude()

Queries are linear scans over the table; there are no indexes.
"""

from .predicates import FieldMatch, Predicate, normalize_value, resolve_predicate
from .queryset import QuerySet

__all__ = [
    "QuerySet",
    "Predicate",
    "FieldMatch",
    "resolve_predicate",
    "normalize_value",
]

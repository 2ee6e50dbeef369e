"""
Schema module for entstore.

This module provides the table definitions the store is built from:
- EntityType and relation fields (fk, many)
- Schema: ordered registration, generated link tables, fingerprinting,
  default state and session factories

Invariants:
    - Table names are unique and immutable once state exists for them
    - Registration order is reducer order
    - The schema is frozen before the first session runs
"""

from .registry import Schema, StateTree
from .types import EntityType, RelationField, RelationKind, fk, many, snake_case

__all__ = [
    # Types
    "EntityType",
    "RelationField",
    "RelationKind",
    "fk",
    "many",
    "snake_case",
    # Registry
    "Schema",
    "StateTree",
]

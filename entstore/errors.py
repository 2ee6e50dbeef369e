"""
Error types for entstore.

This module defines all exception types raised by the store:
- EntStoreError: Base exception
- InvalidPredicateError: filter/exclude called with an unsupported lookup
- MalformedUpdateError: update record with a bad shape or type
- StaleIdError: update targets an id that no longer exists (strict mode)
- UnknownTableError: lookup of a table name the schema does not know
- SessionStateError: session used outside its lifecycle
- RegistryFrozenError / DuplicateRegistrationError: schema registration
- SchemaValidationError: relation targets missing at freeze time
- InvalidOptionsError: options record failed validation

Invariants:
    - All errors inherit from EntStoreError
    - Errors include context for debugging
    - Missing entities are not errors; lookups return None instead
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class EntStoreError(Exception):
    """Base exception for all entstore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENTSTORE_ERROR"
        self.details = details or {}


class InvalidPredicateError(EntStoreError, TypeError):
    """Lookup passed to filter/exclude is neither a callable nor a mapping."""

    def __init__(self, lookup: Any) -> None:
        type_name = type(lookup).__name__
        super().__init__(
            f"Unsupported lookup of type '{type_name}': expected a callable or a mapping",
            code="INVALID_PREDICATE",
            details={"lookup_type": type_name},
        )
        self.lookup = lookup


class MalformedUpdateError(EntStoreError, ValueError):
    """Update record cannot be recorded or applied.

    Raised when:
    - The record is not an UpdateRecord (or a dict of the wire shape)
    - The record type is unknown
    - The payload does not match the record type
    - The record targets a different table than the one being applied
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        update_type: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="MALFORMED_UPDATE",
            details={"table": table, "update_type": update_type},
        )
        self.table = table
        self.update_type = update_type


class StaleIdError(EntStoreError, KeyError):
    """Update or delete targets ids missing from the table.

    Only raised when strict updates are enabled; otherwise stale ids
    are skipped.
    """

    def __init__(self, table: str, ids: List[Any]) -> None:
        super().__init__(
            f"Ids {ids} do not exist in table '{table}'",
            code="STALE_ID",
            details={"table": table, "ids": ids},
        )
        self.table = table
        self.ids = ids

    def __str__(self) -> str:
        return self.message


class UnknownTableError(EntStoreError, LookupError):
    """Table name is not registered in the schema.

    Attributes:
        table: The unknown table name
        suggestions: Similar registered names
    """

    def __init__(self, table: str, suggestions: Optional[List[str]] = None) -> None:
        suggestions = suggestions or []
        msg = f"Unknown table '{table}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_TABLE",
            details={"table": table, "suggestions": suggestions},
        )
        self.table = table
        self.suggestions = suggestions


class SessionStateError(EntStoreError, RuntimeError):
    """Session was used in a way its lifecycle does not allow.

    Raised when:
    - get_next_state() is re-entered from inside a reducer
    """

    def __init__(self, message: str, state: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SESSION_STATE",
            details={"state": state},
        )
        self.state = state


class RegistryFrozenError(EntStoreError):
    """Schema is frozen and cannot be modified."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")


class DuplicateRegistrationError(EntStoreError):
    """Entity type with this name is already registered."""

    def __init__(self, message: str, name: Optional[str] = None) -> None:
        super().__init__(message, code="DUPLICATE_REGISTRATION", details={"name": name})
        self.name = name


class InvalidOptionsError(EntStoreError, ValueError):
    """Options record failed validation at construction."""

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(message, code="INVALID_OPTIONS", details={"option": option})
        self.option = option


class SchemaValidationError(EntStoreError):
    """Schema is inconsistent (e.g. a relation targets an unregistered table)."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__(
            f"Schema validation failed: {'; '.join(errors)}",
            code="SCHEMA_INVALID",
            details={"errors": errors},
        )
        self.errors = errors

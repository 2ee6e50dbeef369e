"""
Shared fixtures for entstore tests.

The library schema used throughout:
    Author
    Book   (author -> Author, genres <-> Genre through BookGenres)
    Genre
"""

from typing import Callable, Optional

import pytest

from entstore import EntityType, Schema, StoreSettings, TableState, fk, many

AUTHORS = [
    {"id": 1, "name": "Herbert"},
    {"id": 2, "name": "Gibson"},
    {"id": 3, "name": "Austen"},
]

BOOKS = [
    {"id": 1, "title": "Dune", "rating": 3, "category": "scifi", "author": 1},
    {"id": 2, "title": "Neuromancer", "rating": 5, "category": "scifi", "author": 2},
    {"id": 3, "title": "Emma", "rating": 4, "category": "classic", "author": 3},
]

GENRES = [
    {"id": 1, "name": "space"},
    {"id": 2, "name": "romance"},
    {"id": 3, "name": "cyberpunk"},
]

BOOK_GENRES = [
    {"id": 1, "from_book_id": 1, "to_genre_id": 1},
    {"id": 2, "from_book_id": 2, "to_genre_id": 3},
    {"id": 3, "from_book_id": 3, "to_genre_id": 2},
]


def build_schema(
    book_reducer: Optional[Callable] = None,
    settings: Optional[StoreSettings] = None,
) -> Schema:
    """Register the library schema (not frozen)."""
    schema = Schema(settings=settings or StoreSettings())
    schema.register(
        EntityType(name="Author"),
        EntityType(
            name="Book",
            fields=(
                fk("author", "Author", related_name="books"),
                many("genres", "Genre", related_name="books"),
            ),
            reducer=book_reducer,
        ),
        EntityType(name="Genre"),
    )
    return schema


def build_state(schema: Schema) -> dict:
    """Default state filled with the library records."""
    state = schema.get_default_state()
    state["Author"] = TableState.from_records(AUTHORS)
    state["Book"] = TableState.from_records(BOOKS)
    state["Genre"] = TableState.from_records(GENRES)
    state["BookGenres"] = TableState.from_records(BOOK_GENRES)
    return state


@pytest.fixture
def schema():
    """Library schema without reducers."""
    return build_schema()


@pytest.fixture
def state(schema):
    """Library state for the schema fixture."""
    return build_state(schema)


@pytest.fixture
def session(schema, state):
    """Session over the library state, without an action."""
    return schema.from_(state)

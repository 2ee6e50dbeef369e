"""
Unit tests for the copy-on-write apply engine.

Tests cover:
- CREATE / UPDATE / DELETE semantics
- Structural sharing and input immutability
- Draft reuse within a batch
- Stale ids and malformed records
"""

import pytest

from entstore.apply.ops import BatchContext, apply_updates
from entstore.apply.table import TableState
from entstore.errors import MalformedUpdateError, SessionStateError, StaleIdError
from entstore.log.records import UpdateRecord


class TestApplyUpdates:
    """Tests for apply_updates."""

    @pytest.fixture
    def table(self):
        """Book table with three records."""
        return TableState.from_records(
            [
                {"id": 1, "title": "Dune", "rating": 3},
                {"id": 2, "title": "Neuromancer", "rating": 5},
                {"id": 3, "title": "Emma", "rating": 4},
            ]
        )

    @pytest.fixture
    def batch(self):
        """Open non-strict batch."""
        with BatchContext() as batch:
            yield batch

    def test_empty_records_return_input(self, table, batch):
        """No records means the very same table object."""
        assert apply_updates("Book", table, [], batch) is table
        assert batch.touched == []

    def test_update_merges_fields(self, table, batch):
        """UPDATE shallow-merges the patch into each targeted record."""
        record = UpdateRecord.update("Book", [1, 3], {"rating": 1, "read": True})

        result = apply_updates("Book", table, [record], batch)

        assert result.get(1) == {"id": 1, "title": "Dune", "rating": 1, "read": True}
        assert result.get(3)["rating"] == 1
        assert result.get(2)["rating"] == 5
        assert batch.touched == ["Book"]

    def test_update_does_not_mutate_input(self, table, batch):
        """The input table and its records are left untouched."""
        original = dict(table.get(1))

        apply_updates("Book", table, [UpdateRecord.update("Book", [1], {"rating": 0})], batch)

        assert table.get(1) == original

    def test_untouched_records_are_shared(self, table, batch):
        """Records no update targets are the same objects as before."""
        result = apply_updates("Book", table, [UpdateRecord.update("Book", [1], {"rating": 0})], batch)

        assert result.get(2) is table.get(2)
        assert result.get(1) is not table.get(1)
        assert result.items == table.items

    def test_last_write_wins(self, table, batch):
        """Later updates to the same field override earlier ones."""
        records = [
            UpdateRecord.update("Book", [2], {"rating": 1}),
            UpdateRecord.update("Book", [2], {"rating": 2, "title": "Count Zero"}),
            UpdateRecord.update("Book", [2], {"rating": 3}),
        ]

        result = apply_updates("Book", table, records, batch)

        assert result.get(2) == {"id": 2, "title": "Count Zero", "rating": 3}

    def test_delete(self, table, batch):
        """DELETE removes ids from items and items_by_id."""
        result = apply_updates("Book", table, [UpdateRecord.delete("Book", [1, 3])], batch)

        assert result.items == (2,)
        assert 1 not in result
        assert 3 not in result
        assert len(table) == 3

    def test_create_appends_and_tracks_max_id(self, table, batch):
        """CREATE appends a new id and bumps max_id."""
        record = UpdateRecord.create("Book", {"id": 7, "title": "Solaris"})

        result = apply_updates("Book", table, [record], batch)

        assert result.items == (1, 2, 3, 7)
        assert result.max_id == 7
        assert table.max_id == 3

    def test_create_existing_id_replaces_in_place(self, table, batch):
        """CREATE of an existing id replaces the record and keeps its position."""
        record = UpdateRecord.create("Book", {"id": 2, "title": "Mona Lisa Overdrive"})

        result = apply_updates("Book", table, [record], batch)

        assert result.items == (1, 2, 3)
        assert result.get(2) == {"id": 2, "title": "Mona Lisa Overdrive"}

    def test_create_with_string_id_keeps_max_id(self, table, batch):
        """Only integer ids move max_id."""
        result = apply_updates("Book", table, [UpdateRecord.create("Book", {"id": "x"})], batch)

        assert result.items[-1] == "x"
        assert result.max_id == 3

    def test_create_without_id(self, table, batch):
        """CREATE payloads must carry the id attribute."""
        with pytest.raises(MalformedUpdateError, match="missing id attribute"):
            apply_updates("Book", table, [UpdateRecord.create("Book", {"title": "?"})], batch)

    def test_custom_id_attribute(self, batch):
        """The id attribute is configurable per table."""
        result = apply_updates(
            "Tag", TableState(), [UpdateRecord.create("Tag", {"slug": "sf"})], batch, id_attribute="slug"
        )

        assert result.items == ("sf",)

    def test_update_after_delete_is_skipped(self, table, batch):
        """Ids deleted earlier in the same records are stale for later updates."""
        records = [
            UpdateRecord.delete("Book", [1]),
            UpdateRecord.update("Book", [1, 2], {"rating": 0}),
        ]

        result = apply_updates("Book", table, records, batch)

        assert result.items == (2, 3)
        assert result.get(2)["rating"] == 0

    def test_stale_ids_skipped(self, table, batch):
        """Missing ids are skipped when the batch is not strict."""
        result = apply_updates("Book", table, [UpdateRecord.delete("Book", [42])], batch)

        assert result is table

    def test_stale_ids_strict(self, table):
        """Strict batches raise StaleIdError for missing ids."""
        with BatchContext(strict=True) as batch:
            with pytest.raises(StaleIdError) as exc_info:
                apply_updates("Book", table, [UpdateRecord.update("Book", [42], {"a": 1})], batch)

        assert exc_info.value.ids == [42]
        assert exc_info.value.table == "Book"

    def test_record_for_other_table(self, table, batch):
        """Records must target the table being applied."""
        with pytest.raises(MalformedUpdateError, match="applied to table 'Book'"):
            apply_updates("Book", table, [UpdateRecord.delete("Author", [1])], batch)

    def test_closed_batch(self, table):
        """A closed batch cannot apply records."""
        batch = BatchContext()
        batch.close()

        with pytest.raises(SessionStateError):
            apply_updates("Book", table, [UpdateRecord.delete("Book", [1])], batch)


class TestBatchContext:
    """Tests for draft ownership."""

    @pytest.fixture
    def table(self):
        """Small table."""
        return TableState.from_records([{"id": 1, "n": 0}, {"id": 2, "n": 0}])

    def test_tokens_are_unique(self):
        """Every batch gets its own token."""
        assert BatchContext().token != BatchContext().token

    def test_second_pass_reuses_drafts(self, table):
        """A table applied twice in one batch is copied only once."""
        with BatchContext() as batch:
            first = apply_updates("T", table, [UpdateRecord.update("T", [1], {"n": 1})], batch)
            draft_record = first.get(1)
            second = apply_updates("T", first, [UpdateRecord.update("T", [1], {"n": 2})], batch)

        assert second.items_by_id is first.items_by_id
        assert second.get(1) is draft_record
        assert second.get(1)["n"] == 2
        assert table.get(1)["n"] == 0

    def test_new_batch_does_not_own_previous_drafts(self, table):
        """Drafts from an earlier batch are copied, not mutated."""
        with BatchContext() as batch:
            first = apply_updates("T", table, [UpdateRecord.update("T", [1], {"n": 1})], batch)

        with BatchContext() as batch:
            second = apply_updates("T", first, [UpdateRecord.update("T", [1], {"n": 2})], batch)

        assert first.get(1)["n"] == 1
        assert second.get(1)["n"] == 2

    def test_mutating_batch_writes_in_place(self, table):
        """Mutating batches own everything and update records in place."""
        record = table.get(1)

        with BatchContext(mutating=True) as batch:
            apply_updates("T", table, [UpdateRecord.update("T", [1], {"n": 9})], batch)

        assert record["n"] == 9

    def test_close(self):
        """Closing releases drafts and marks the batch closed."""
        batch = BatchContext()
        batch.adopt({})
        assert batch.owns({}) is False

        batch.close()

        assert batch.closed is True

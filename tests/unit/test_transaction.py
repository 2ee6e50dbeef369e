"""
Unit tests for the Transaction update log.

Tests cover:
- Append order and per-table views
- Applied markers and unapplied grouping
- Close semantics
"""

import logging

import pytest

from entstore.errors import MalformedUpdateError
from entstore.log.records import UpdateRecord
from entstore.log.transaction import Transaction


class TestTransaction:
    """Tests for Transaction."""

    @pytest.fixture
    def tx(self):
        """Transaction with interleaved records for two tables."""
        tx = Transaction()
        tx.add_update(UpdateRecord.update("Book", [1], {"rating": 1}))
        tx.add_update(UpdateRecord.delete("Author", [2]))
        tx.add_update(UpdateRecord.update("Book", [1], {"rating": 2}))
        return tx

    def test_empty(self):
        """A new transaction has no records."""
        tx = Transaction()

        assert len(tx) == 0
        assert tx.updates == []
        assert tx.get_updates_for("Book") == []
        assert tx.closed is False

    def test_global_order(self, tx):
        """updates lists records in insertion order."""
        assert [r.table for r in tx.updates] == ["Book", "Author", "Book"]
        assert len(tx) == 3

    def test_per_table_order(self, tx):
        """Per-table views keep insertion order."""
        ratings = [r.payload["mergeObj"]["rating"] for r in tx.get_updates_for("Book")]

        assert ratings == [1, 2]
        assert tx.get_updates_for("Genre") == []

    def test_rejects_non_records(self):
        """Only UpdateRecord instances are accepted."""
        tx = Transaction()

        with pytest.raises(MalformedUpdateError, match="Expected UpdateRecord"):
            tx.add_update({"type": "DELETE", "payload": [1], "meta": {"name": "Book"}})

    def test_mark_applied(self, tx):
        """Applied records drop out of the pending view but stay in the log."""
        tx.mark_applied("Book")

        assert tx.get_pending_updates_for("Book") == []
        assert len(tx.get_updates_for("Book")) == 2
        assert len(tx.get_pending_updates_for("Author")) == 1

    def test_records_after_mark_are_pending(self, tx):
        """mark_applied only covers records already logged."""
        tx.mark_applied("Book")
        late = UpdateRecord.delete("Book", [1])
        tx.add_update(late)

        assert tx.get_pending_updates_for("Book") == [late]

    def test_unapplied_by_model(self, tx):
        """Unapplied records are grouped by table."""
        tx.mark_applied("Author")

        unapplied = tx.get_unapplied_updates_by_model()

        assert list(unapplied) == ["Book"]
        assert len(unapplied["Book"]) == 2

    def test_unapplied_empty_when_all_applied(self, tx):
        """No entries remain once every table is applied."""
        tx.mark_applied("Book")
        tx.mark_applied("Author")

        assert tx.get_unapplied_updates_by_model() == {}

    def test_add_after_close_warns(self, tx, caplog):
        """Appending to a closed log warns but still records."""
        tx.close()

        with caplog.at_level(logging.WARNING, logger="entstore.log.transaction"):
            tx.add_update(UpdateRecord.delete("Genre", [1]))

        assert tx.closed is True
        assert len(tx) == 4
        assert "closed transaction" in caplog.text

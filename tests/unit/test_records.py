"""
Unit tests for update records.

Tests cover:
- Record builders and payload shapes
- Wire shape conversion
- Payload validation
"""

import dataclasses

import pytest

from entstore.errors import MalformedUpdateError
from entstore.log.records import UpdateRecord, UpdateType


class TestUpdateRecord:
    """Tests for UpdateRecord."""

    def test_create_copies_record(self):
        """CREATE payload is a copy of the record mapping."""
        props = {"id": 4, "title": "Solaris"}
        record = UpdateRecord.create("Book", props)
        props["title"] = "changed"

        assert record.type == UpdateType.CREATE
        assert record.table == "Book"
        assert record.payload == {"id": 4, "title": "Solaris"}

    def test_update_payload_shape(self):
        """UPDATE payload carries idArr and mergeObj."""
        record = UpdateRecord.update("Book", (1, 2), {"rating": 5})

        assert record.payload == {"idArr": [1, 2], "mergeObj": {"rating": 5}}
        assert record.target_ids == [1, 2]

    def test_delete_payload_shape(self):
        """DELETE payload is the list of ids."""
        record = UpdateRecord.delete("Book", [3])

        assert record.payload == [3]
        assert record.target_ids == [3]

    def test_create_has_no_target_ids(self):
        """CREATE records do not target existing ids."""
        assert UpdateRecord.create("Book", {"id": 1}).target_ids == []

    def test_to_dict_wire_shape(self):
        """to_dict produces the exact wire shape."""
        record = UpdateRecord.update("Todo", [1, 2], {"done": True})

        assert record.to_dict() == {
            "type": "UPDATE",
            "payload": {"idArr": [1, 2], "mergeObj": {"done": True}},
            "meta": {"name": "Todo"},
        }

    def test_from_dict(self):
        """from_dict reads the wire shape back."""
        data = {"type": "DELETE", "payload": [7], "meta": {"name": "Genre"}}

        record = UpdateRecord.from_dict(data)

        assert record == UpdateRecord.delete("Genre", [7])
        assert record.to_dict() == data

    def test_from_dict_missing_keys(self):
        """from_dict rejects records without type, payload or meta."""
        with pytest.raises(MalformedUpdateError, match="Missing required keys"):
            UpdateRecord.from_dict({"type": "DELETE", "payload": [1]})

    def test_from_dict_missing_table_name(self):
        """from_dict rejects meta without a table name."""
        with pytest.raises(MalformedUpdateError, match="name"):
            UpdateRecord.from_dict({"type": "DELETE", "payload": [1], "meta": {}})

    def test_unknown_type(self):
        """Unknown wire types are rejected."""
        with pytest.raises(MalformedUpdateError, match="Invalid update type"):
            UpdateRecord.from_dict({"type": "UPSERT", "payload": {}, "meta": {"name": "Book"}})

    def test_update_without_merge_obj(self):
        """UPDATE payload must contain a mergeObj mapping."""
        with pytest.raises(MalformedUpdateError) as exc_info:
            UpdateRecord(UpdateType.UPDATE, {"idArr": [1]}, "Book")

        assert exc_info.value.code == "MALFORMED_UPDATE"
        assert exc_info.value.update_type == "UPDATE"

    def test_delete_with_string_payload(self):
        """A string is not a list of ids."""
        with pytest.raises(MalformedUpdateError):
            UpdateRecord(UpdateType.DELETE, "1", "Book")

    def test_create_with_list_payload(self):
        """CREATE payload must be a mapping."""
        with pytest.raises(MalformedUpdateError):
            UpdateRecord(UpdateType.CREATE, [1], "Book")

    def test_empty_table_name(self):
        """Records need a target table."""
        with pytest.raises(MalformedUpdateError, match="target table"):
            UpdateRecord.delete("", [1])

    def test_records_are_immutable(self):
        """Records cannot be modified after creation."""
        record = UpdateRecord.delete("Book", [1])

        with pytest.raises(dataclasses.FrozenInstanceError):
            record.table = "Author"

    def test_str(self):
        """String form names type and table."""
        assert str(UpdateRecord.delete("Book", [1])) == "UpdateRecord(DELETE Book)"

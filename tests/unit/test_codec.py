"""
Unit tests for record value encoding.

Tests cover:
- Encoding of scalars, dates and structures
- Decoding driven by column type
- Undeclared columns
- Comparison view and storage ordering
"""

from datetime import datetime, timezone

import pytest

from dbaas.dyntable_server.codec import (
    compare_record,
    compare_value,
    decode_record,
    decode_value,
    encode_record,
    encode_value,
    storage_order,
    text_value,
)
from dbaas.dyntable_server.schema.types import ID_COLUMN, ColumnDef, ColumnType


class TestEncode:
    """Tests for encode_value and encode_record."""

    @pytest.mark.parametrize("value", [None, "text", 3, 1.5, True])
    def test_scalars_pass_through(self, value):
        assert encode_value(value) == value

    def test_datetime_becomes_iso_text(self):
        when = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
        assert encode_value(when) == "2024-05-06T07:08:09+00:00"

    def test_structures_become_json(self):
        assert encode_value({"a": [1, 2]}) == '{"a": [1, 2]}'
        assert encode_value(["x"]) == '["x"]'

    def test_nested_dates_in_json(self):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert encode_value({"at": when}) == '{"at": "2024-01-01T00:00:00+00:00"}'

    def test_record_drops_undeclared_columns(self):
        columns = {"id": ID_COLUMN, "n": ColumnDef(ColumnType.INT)}
        assert encode_record({"n": 1, "extra": 2}, columns) == {"n": 1}

    def test_empty_record(self):
        assert encode_record(None, {"id": ID_COLUMN}) == {}


class TestDecode:
    """Tests for decode_value and decode_record."""

    def test_none_passes_through(self):
        for column_type in ColumnType:
            assert decode_value(None, column_type) is None

    @pytest.mark.parametrize(
        "raw, expected",
        [(1, True), ("1", True), ("true", True), (True, True), (0, False), ("0", False), ("no", False)],
    )
    def test_boolean(self, raw, expected):
        assert decode_value(raw, ColumnType.BOOLEAN) is expected

    def test_int(self):
        assert decode_value("42", ColumnType.INT) == 42
        assert decode_value("4.0", ColumnType.INT) == 4
        assert decode_value("x", ColumnType.INT) == "x"

    def test_float(self):
        assert decode_value("1.5", ColumnType.FLOAT) == 1.5
        assert decode_value(2, ColumnType.FLOAT) == 2.0

    def test_string_and_id(self):
        assert decode_value(5, ColumnType.STRING) == "5"
        assert decode_value(7, ColumnType.ID) == "7"

    def test_date_from_epoch_millis(self):
        expected = datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        assert decode_value(1000, ColumnType.DATE) == expected
        assert decode_value("1000", ColumnType.DATE) == expected

    def test_date_from_iso_text(self):
        decoded = decode_value("2024-05-06T07:08:09+00:00", ColumnType.DATE)
        assert decoded == datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)

    def test_unparsable_date_kept(self):
        assert decode_value("yesterday", ColumnType.DATE) == "yesterday"

    def test_json(self):
        assert decode_value('{"a": [1, 2]}', ColumnType.JSON) == {"a": [1, 2]}
        assert decode_value("not json", ColumnType.JSON) == "not json"
        assert decode_value(3, ColumnType.JSON) == 3

    def test_record(self):
        columns = {
            "id": ID_COLUMN,
            "n": ColumnDef(ColumnType.INT),
            "meta": ColumnDef(ColumnType.JSON),
        }

        record = decode_record({"id": "r1", "n": "3", "meta": "[1]", "stale": "x"}, columns)

        assert record == {"id": "r1", "n": 3, "meta": [1]}

    def test_missing_row(self):
        assert decode_record(None, {"id": ID_COLUMN}) is None


class TestCompare:
    """Tests for the comparison view of stored values."""

    def test_text_value(self):
        assert text_value(True) == "1"
        assert text_value(False) == "0"
        assert text_value(12) == "12"
        assert text_value(1.5) == "1.5"
        assert text_value(datetime(2020, 1, 1)) == "2020-01-01T00:00:00"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("12", 12),
            (" 7 ", 7),
            ("2.5", 2.5),
            ("1e3", 1000.0),
            (True, 1),
            (4, 4),
            ("abc", "abc"),
            ("1_000", "1_000"),
            ("inf", "inf"),
        ],
    )
    def test_numeric_columns(self, raw, expected):
        assert compare_value(raw, ColumnType.INT) == expected
        assert type(compare_value(raw, ColumnType.FLOAT)) is type(expected)

    def test_text_columns(self):
        assert compare_value(12, ColumnType.STRING) == "12"
        assert compare_value(True, ColumnType.BOOLEAN) == "1"
        assert compare_value("2020-01-01", ColumnType.DATE) == "2020-01-01"
        assert compare_value(None, ColumnType.DATE) is None

    def test_json_columns_are_decoded(self):
        assert compare_value('["a"]', ColumnType.JSON) == ["a"]

    def test_record(self):
        columns = {"id": ID_COLUMN, "n": ColumnDef(ColumnType.INT)}
        assert compare_record({"id": "r1"}, columns) == {"id": "r1", "n": None}

    def test_storage_order(self):
        values = ["b", None, 10, "a", 2.5]
        assert sorted(values, key=storage_order) == [None, 2.5, 10, "a", "b"]

"""Unit tests for tilequery.services.decoder row decoding.

This module validates:
    - Splitting rows into geometry, identifier and attribute tags.
    - hstore flattening from text and dict values.
    - Omission of null values and preservation of 64-bit precision.
    - Errors for unsupported types, malformed values and bad identifiers.

See Also:
    - backend/tilequery/services/decoder.py for implementation.
"""

from __future__ import annotations

import datetime
import decimal
import logging
import uuid
from typing import Any

import pytest

from tilequery import errors
from tilequery import models
from tilequery.services import decoder

INT8 = 20
INT4 = 23
TEXT = 25
BOOL = 16
FLOAT8 = 701
NUMERIC = 1700
TIMESTAMP = 1114
BYTEA = 17
JSON = 114
HSTORE_OID = 16400


def _col(name: str, oid: int, type_name: str | None = None) -> Any:
    return models.ColumnDescription(
        name=name, type_oid=oid, type_name=type_name
    )


HSTORE_REGISTRY = decoder.DEFAULT_REGISTRY.with_hstore([HSTORE_OID])


def test_decipher_hstore_text_and_id() -> None:
    """Test that hstore keys become tags and the id is an int."""
    row = decoder.decipher_fields(
        "geom",
        "gid",
        [_col("tags", HSTORE_OID), _col("gid", INT8)],
        ['"height"=>"9"', 1000888],
        HSTORE_REGISTRY,
    )
    assert row.identifier == 1000888
    assert row.tags == {"height": "9"}
    assert row.geometry is None


def test_decipher_hstore_multiple_keys() -> None:
    """Test flattening of a multi-key hstore value."""
    row = decoder.decipher_fields(
        "geom",
        "gid",
        [_col("tags", HSTORE_OID), _col("gid", INT8)],
        ['"hello"=>"there", "good"=>"day"', 8880001],
        HSTORE_REGISTRY,
    )
    assert row.identifier == 8880001
    assert row.tags == {"hello": "there", "good": "day"}


def test_decipher_hstore_pairs_with_int8_tag() -> None:
    """Test that hstore pairs and a bigint column all become tags."""
    row = decoder.decipher_fields(
        "geom",
        "id",
        [_col("id", INT4), _col("tags", HSTORE_OID), _col("int8_test", INT8)],
        [2, '"hello"=>"there", "good"=>"day"', 8880001],
        HSTORE_REGISTRY,
    )
    assert row.identifier == 2
    assert row.tags == {"hello": "there", "good": "day", "int8_test": 8880001}
    assert len(row.tags) == 3
    assert type(row.tags["int8_test"]) is int


def test_decipher_int8_tag_keeps_full_precision() -> None:
    """Test that a bigint tag is not narrowed through a float."""
    big = 2**63 - 1
    row = decoder.decipher_fields(
        "geom",
        "id",
        [_col("id", INT4), _col("tags", HSTORE_OID), _col("int8_test", INT8)],
        [1, '"height"=>"9"', big],
        HSTORE_REGISTRY,
    )
    assert row.tags == {"height": "9", "int8_test": 9223372036854775807}
    assert row.tags["int8_test"] != float(big)


def test_decipher_hstore_by_type_name_and_dict() -> None:
    """Test hstore matched by name and already parsed into a dict."""
    row = decoder.decipher_fields(
        "geom",
        "gid",
        [_col("gid", INT4), _col("tags", 99999, "hstore")],
        [7, {"a": "1", "b": None}],
    )
    assert row.tags == {"a": "1"}


def test_decipher_scalar_columns_keep_driver_types() -> None:
    """Test that scalar tag values are neither narrowed nor rounded."""
    stamp = datetime.datetime(2024, 5, 1, 12, 30)
    big = 2**62 + 1
    descriptions = [
        _col("geom", BYTEA),
        _col("gid", INT8),
        _col("name", TEXT),
        _col("big", INT8),
        _col("ratio", FLOAT8),
        _col("price", NUMERIC),
        _col("open", BOOL),
        _col("built", TIMESTAMP),
    ]
    values = [
        memoryview(b"\x01\x01\x00"),
        1,
        "Main St",
        big,
        0.1,
        decimal.Decimal("12.50"),
        False,
        stamp,
    ]
    row = decoder.decipher_fields("geom", "gid", descriptions, values)

    assert row.geometry == b"\x01\x01\x00"
    assert row.tags == {
        "name": "Main St",
        "big": big,
        "ratio": 0.1,
        "price": decimal.Decimal("12.50"),
        "open": False,
        "built": stamp,
    }
    assert type(row.tags["big"]) is int
    assert row.tags["big"] == 4611686018427387905


def test_decipher_omits_nulls() -> None:
    """Test that null attribute values produce no tag."""
    row = decoder.decipher_fields(
        "geom",
        "gid",
        [_col("gid", INT8), _col("name", TEXT), _col("lanes", INT4)],
        [1, None, 2],
    )
    assert row.tags == {"lanes": 2}


def test_decipher_hex_geometry() -> None:
    """Test decoding of hex-encoded WKB geometry text."""
    row = decoder.decipher_fields(
        "geom", None, [_col("geom", 99999, "geometry")], ["0101"]
    )
    assert row.geometry == b"\x01\x01"
    assert row.identifier is None


def test_decipher_unsupported_type(caplog: pytest.LogCaptureFixture) -> None:
    """Test that an unknown attribute type is rejected with context."""
    with caplog.at_level(logging.WARNING, logger="tilequery"):
        with pytest.raises(errors.DecodeError) as exc_info:
            decoder.decipher_fields(
                "geom",
                "gid",
                [_col("gid", INT8), _col("doc", JSON, "json")],
                [1, {"a": 1}],
            )
    assert exc_info.value.column == "doc"
    assert exc_info.value.type_name == "json"
    assert "doc" in caplog.text


def test_decipher_second_geometry_column_rejected() -> None:
    """Test that a binary column other than the geometry is rejected."""
    with pytest.raises(errors.DecodeError) as exc_info:
        decoder.decipher_fields(
            "geom",
            "gid",
            [_col("gid", INT8), _col("raw", BYTEA)],
            [1, b"\x00"],
        )
    assert exc_info.value.column == "raw"
    assert exc_info.value.type_name == str(BYTEA)


def test_decipher_malformed_hstore() -> None:
    """Test that unparseable hstore text raises DecodeError."""
    with pytest.raises(errors.DecodeError, match="malformed hstore"):
        decoder.decipher_fields(
            "geom",
            "gid",
            [_col("gid", INT8), _col("tags", HSTORE_OID)],
            [1, "not an hstore"],
            HSTORE_REGISTRY,
        )


def test_decipher_missing_id_column() -> None:
    """Test that a configured id column must be present."""
    with pytest.raises(errors.DecodeError) as exc_info:
        decoder.decipher_fields("geom", "gid", [_col("name", TEXT)], ["x"])
    assert exc_info.value.column == "gid"


def test_decipher_length_mismatch() -> None:
    """Test that descriptions and values must line up."""
    with pytest.raises(errors.DecodeError, match="2 columns"):
        decoder.decipher_fields(
            "geom", None, [_col("a", TEXT), _col("b", TEXT)], ["x"]
        )


def test_decipher_mismatched_value_type() -> None:
    """Test that a value not matching its column category is rejected."""
    with pytest.raises(errors.DecodeError, match="numeric"):
        decoder.decipher_fields(
            "geom", None, [_col("lanes", INT4)], ["two"]
        )


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (42, 42),
        (2**63 - 1, 2**63 - 1),
        (-(2**63), -(2**63)),
        (decimal.Decimal("17"), 17),
        (3.0, 3),
        ("way/123", "way/123"),
        (
            uuid.UUID("12345678-1234-5678-1234-567812345678"),
            "12345678-1234-5678-1234-567812345678",
        ),
    ],
)
def test_coerce_identifier(value: Any, expected: Any) -> None:
    """Test identifier coercion to int64 or text."""
    result = decoder.coerce_identifier("gid", value)
    assert result == expected
    assert type(result) is type(expected)


@pytest.mark.parametrize(
    "value",
    [
        2**63,
        -(2**63) - 1,
        1.5,
        float("nan"),
        decimal.Decimal("2.5"),
        True,
        b"1",
    ],
)
def test_coerce_identifier_rejects(value: Any) -> None:
    """Test identifiers that cannot be represented."""
    with pytest.raises(errors.DecodeError) as exc_info:
        decoder.coerce_identifier("gid", value)
    assert exc_info.value.column == "gid"


def test_registry_categories() -> None:
    """Test built-in and registered type classification."""
    registry = decoder.DEFAULT_REGISTRY
    assert (
        registry.categorize(_col("a", INT8)) is decoder.ColumnCategory.NUMERIC
    )
    assert (
        registry.categorize(_col("a", TEXT)) is decoder.ColumnCategory.TEXT
    )
    assert (
        registry.categorize(_col("a", BOOL)) is decoder.ColumnCategory.BOOLEAN
    )
    assert (
        registry.categorize(_col("a", TIMESTAMP))
        is decoder.ColumnCategory.TEMPORAL
    )
    assert (
        registry.categorize(_col("a", HSTORE_OID))
        is decoder.ColumnCategory.UNSUPPORTED
    )
    assert (
        HSTORE_REGISTRY.categorize(_col("a", HSTORE_OID))
        is decoder.ColumnCategory.KEY_VALUE
    )


def test_tag_schema_excludes_geometry_and_id() -> None:
    """Test the attribute schema of a result set."""
    schema = decoder.tag_schema(
        [_col("geom", BYTEA), _col("gid", INT8), _col("name", TEXT)],
        "geom",
        "gid",
    )
    assert schema == {"name": decoder.ColumnCategory.TEXT}


class _FakeCursor:
    def __init__(self, description: Any) -> None:
        self.description = description


def test_descriptions_from_cursor() -> None:
    """Test building descriptions from DB-API column tuples."""
    cursor = _FakeCursor(
        [("gid", INT8, None, 8, None, None, None), ("name", TEXT)]
    )
    assert decoder.descriptions_from_cursor(cursor) == (
        models.ColumnDescription("gid", INT8),
        models.ColumnDescription("name", TEXT),
    )


def test_descriptions_from_cursor_without_result() -> None:
    """Test that a cursor without a result set is rejected."""
    with pytest.raises(errors.DecodeError):
        decoder.descriptions_from_cursor(_FakeCursor(None))

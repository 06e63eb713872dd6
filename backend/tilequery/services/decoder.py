"""Decoding of query result rows into features.

Each result row of a layer query carries a geometry column, an identifier
column and any number of attribute columns. decipher_fields() splits a row
into those three parts:

- the geometry column is returned as WKB bytes;
- the identifier column is coerced to a signed 64-bit integer where its
  type allows it, or kept as text;
- every other column becomes an attribute tag. hstore columns are
  flattened, so each key becomes a tag of its own.

Columns are classified by PostgreSQL type OID into a fixed set of
categories (ColumnCategory). A type outside the registry is rejected with a
DecodeError naming the column and type. Tag values keep the Python type
psycopg2 produced for them (``int`` for int8, ``Decimal`` for numeric, ...)
and are never narrowed.

Null values are omitted from the tags.

Example:
    Decode a row fetched with psycopg2:
        >>> from tilequery.services import decoder
        >>> with conn.cursor() as cur:
        ...     cur.execute("SELECT gid, ST_AsBinary(geom) AS geom, tags "
        ...                 "FROM parks")
        ...     descriptions = decoder.descriptions_from_cursor(cur)
        ...     for row in cur:
        ...         feature = decoder.decipher_fields(
        ...             "geom", "gid", descriptions, row
        ...         )
"""

from __future__ import annotations

import datetime
import decimal
import enum
import logging
import math
import types
import uuid
from typing import TYPE_CHECKING, Any, assert_never

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from tilequery import errors
from tilequery import models

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

UUID_OID = 2950


class ColumnCategory(enum.Enum):
    """Kinds of result columns the decoder knows how to handle."""

    NUMERIC = "numeric"
    TEXT = "text"
    BOOLEAN = "boolean"
    TEMPORAL = "temporal"
    KEY_VALUE = "key_value"
    GEOMETRY = "geometry"
    UNSUPPORTED = "unsupported"


def _oids(*casters: Any) -> frozenset[int]:
    return frozenset(oid for caster in casters for oid in caster.values)


_BUILTIN_CATEGORIES: dict[int, ColumnCategory] = {
    **dict.fromkeys(_oids(psycopg2.NUMBER), ColumnCategory.NUMERIC),
    **dict.fromkeys(_oids(psycopg2.STRING), ColumnCategory.TEXT),
    UUID_OID: ColumnCategory.TEXT,
    **dict.fromkeys(
        _oids(psycopg2.extensions.BOOLEAN), ColumnCategory.BOOLEAN
    ),
    **dict.fromkeys(
        _oids(
            psycopg2.DATETIME,
            psycopg2.extensions.DATE,
            psycopg2.extensions.TIME,
            psycopg2.extensions.INTERVAL,
        ),
        ColumnCategory.TEMPORAL,
    ),
    **dict.fromkeys(_oids(psycopg2.BINARY), ColumnCategory.GEOMETRY),
}

# Extension types have per-database OIDs and are matched by name.
_NAMED_CATEGORIES: dict[str, ColumnCategory] = {
    "hstore": ColumnCategory.KEY_VALUE,
    "geometry": ColumnCategory.GEOMETRY,
    "geography": ColumnCategory.GEOMETRY,
    "bytea": ColumnCategory.GEOMETRY,
    "uuid": ColumnCategory.TEXT,
    "citext": ColumnCategory.TEXT,
}


class TypeRegistry:
    """Immutable mapping of PostgreSQL type OIDs to column categories.

    Example:
        Register the hstore OIDs of a database:
            >>> from tilequery.db import database
            >>> registry = DEFAULT_REGISTRY.with_hstore(
            ...     database.hstore_oids(conn)
            ... )
    """

    def __init__(self, categories: Mapping[int, ColumnCategory]) -> None:
        self._categories = types.MappingProxyType(dict(categories))

    def with_hstore(self, oids: Iterable[int]) -> TypeRegistry:
        """Return a registry that also maps ``oids`` to KEY_VALUE."""
        extra = dict.fromkeys(oids, ColumnCategory.KEY_VALUE)
        return TypeRegistry({**self._categories, **extra})

    def categorize(
        self, description: models.ColumnDescription
    ) -> ColumnCategory:
        """Return the category of a column, UNSUPPORTED if unknown."""
        category = self._categories.get(description.type_oid)
        if category is not None:
            return category
        if description.type_name is not None:
            return _NAMED_CATEGORIES.get(
                description.type_name.lower(), ColumnCategory.UNSUPPORTED
            )
        return ColumnCategory.UNSUPPORTED


DEFAULT_REGISTRY = TypeRegistry(_BUILTIN_CATEGORIES)


def descriptions_from_cursor(
    cursor: Any,
) -> tuple[models.ColumnDescription, ...]:
    """Build column descriptions from a DB-API cursor's ``description``.

    Raises:
        DecodeError: if the cursor has not produced a result set.
    """
    if cursor.description is None:
        raise errors.DecodeError("cursor has no result description")
    return tuple(
        models.ColumnDescription(name=column[0], type_oid=column[1])
        for column in cursor.description
    )


def tag_schema(
    descriptions: Sequence[models.ColumnDescription],
    geom_field: str,
    id_field: str | None,
    registry: TypeRegistry = DEFAULT_REGISTRY,
) -> dict[str, ColumnCategory]:
    """Return the category of every attribute column.

    Geometry and identifier columns are excluded. hstore columns are listed
    under their own name, since their keys are only known per row.
    """
    return {
        d.name: registry.categorize(d)
        for d in descriptions
        if d.name not in (geom_field, id_field)
    }


def coerce_identifier(column: str, value: Any) -> models.Identifier:
    """Coerce an identifier value to a signed 64-bit int or a string.

    Raises:
        DecodeError: if the value overflows int64, is a non-integral number,
            or has a type that cannot identify a feature.
    """
    if isinstance(value, bool):
        raise errors.DecodeError(
            f"boolean value cannot be used as feature id in {column!r}",
            column=column,
            type_name="bool",
        )
    if isinstance(value, (float, decimal.Decimal)):
        if not math.isfinite(value) or value != int(value):
            raise errors.DecodeError(
                f"non-integral feature id {value!r} in {column!r}",
                column=column,
            )
        value = int(value)
    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise errors.DecodeError(
                f"feature id {value} in {column!r} overflows int64",
                column=column,
            )
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, str):
        return value
    raise errors.DecodeError(
        f"cannot use {type(value).__name__} as feature id in {column!r}",
        column=column,
        type_name=type(value).__name__,
    )


def _key_value_tags(column: str, value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        pairs = value
    elif isinstance(value, str):
        try:
            pairs = psycopg2.extras.HstoreAdapter.parse(value, None)
        except psycopg2.InterfaceError as e:
            raise errors.DecodeError(
                f"malformed hstore in column {column!r}: {e}",
                column=column,
                type_name="hstore",
            ) from e
    else:
        raise errors.DecodeError(
            f"unexpected {type(value).__name__} in hstore column {column!r}",
            column=column,
            type_name="hstore",
        )
    return {k: v for k, v in pairs.items() if v is not None}


_SCALAR_TYPES: Mapping[ColumnCategory, tuple[type, ...]] = (
    types.MappingProxyType(
        {
            ColumnCategory.NUMERIC: (int, float, decimal.Decimal),
            ColumnCategory.TEXT: (str, uuid.UUID),
            ColumnCategory.BOOLEAN: (bool,),
            ColumnCategory.TEMPORAL: (
                datetime.date,
                datetime.time,
                datetime.timedelta,
                str,
            ),
        }
    )
)


def _scalar_tag(
    column: str, category: ColumnCategory, value: Any
) -> Any:
    if isinstance(value, _SCALAR_TYPES[category]):
        return value
    raise errors.DecodeError(
        f"unexpected {type(value).__name__} value in {category.value} "
        f"column {column!r}",
        column=column,
        type_name=type(value).__name__,
    )


def _geometry_bytes(column: str, value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        # hex-encoded EWKB, as PostGIS renders an unwrapped geometry column
        try:
            return bytes.fromhex(value)
        except ValueError as e:
            raise errors.DecodeError(
                f"geometry column {column!r} is not hex-encoded WKB",
                column=column,
            ) from e
    raise errors.DecodeError(
        f"unexpected {type(value).__name__} in geometry column {column!r}",
        column=column,
        type_name=type(value).__name__,
    )


def decipher_fields(
    geom_field: str,
    id_field: str | None,
    descriptions: Sequence[models.ColumnDescription],
    values: Sequence[Any],
    registry: TypeRegistry = DEFAULT_REGISTRY,
) -> models.DecodedRow:
    """Split a result row into geometry, identifier and attribute tags.

    Args:
        geom_field: Name of the geometry column. A row without it decodes
            to a None geometry.
        id_field: Name of the identifier column. When set, the column must
            be present in ``descriptions``.
        descriptions: Column descriptions, parallel to ``values``.
        values: Row values as returned by the driver.
        registry: Type registry used to classify columns.

    Returns:
        DecodedRow with the geometry, identifier and tags of the row.

    Raises:
        DecodeError: for an unsupported column type, a malformed hstore
            value, an identifier that cannot be coerced, a missing
            identifier column or mismatched descriptions and values.
    """
    if len(descriptions) != len(values):
        raise errors.DecodeError(
            f"row has {len(values)} values for {len(descriptions)} columns"
        )
    if id_field and all(d.name != id_field for d in descriptions):
        raise errors.DecodeError(
            f"identifier column {id_field!r} missing from result",
            column=id_field,
        )

    geometry: bytes | None = None
    identifier: models.Identifier | None = None
    tags: dict[str, Any] = {}

    for description, value in zip(descriptions, values):
        name = description.name
        if value is None:
            continue
        if name == geom_field:
            geometry = _geometry_bytes(name, value)
            continue
        if id_field and name == id_field:
            identifier = coerce_identifier(name, value)
            continue

        category = registry.categorize(description)
        match category:
            case ColumnCategory.KEY_VALUE:
                tags.update(_key_value_tags(name, value))
            case (
                ColumnCategory.NUMERIC
                | ColumnCategory.TEXT
                | ColumnCategory.BOOLEAN
                | ColumnCategory.TEMPORAL
            ):
                tags[name] = _scalar_tag(name, category, value)
            case ColumnCategory.GEOMETRY | ColumnCategory.UNSUPPORTED:
                type_name = description.type_name or str(description.type_oid)
                logger.warning(
                    "Unsupported %s column %r (type %s)",
                    category.value,
                    name,
                    type_name,
                )
                raise errors.DecodeError(
                    f"column {name!r} has unsupported type {type_name} "
                    f"for an attribute tag",
                    column=name,
                    type_name=type_name,
                )
            case _:
                assert_never(category)

    return models.DecodedRow(
        geometry=geometry, identifier=identifier, tags=tags
    )

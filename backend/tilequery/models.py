"""Data models for tiles, layers, query parameters and decoded rows.

This module defines the value types passed between the tilequery services.
All of them are frozen dataclasses: a Layer or Tile can be shared across
threads and reused for any number of requests without copying.

Example:
    Describe a SQL-defined layer and the tile to render:
        >>> from tilequery.models import Layer, Tile
        >>> layer = Layer(
        ...     name="roads",
        ...     sql="SELECT gid, ST_AsBinary(geom) AS geom, kind "
        ...     "FROM roads WHERE geom && !BBOX!",
        ... )
        >>> tile = Tile(z=2, x=1, y=1)

    Describe a table-defined layer whose SQL is generated:
        >>> parks = Layer(
        ...     name="parks",
        ...     table="public.parks",
        ...     fields=("name", "area"),
        ...     geometry_type="Polygon",
        ... )
"""

from __future__ import annotations

import dataclasses
from typing import Any, Literal

BBox = tuple[float, float, float, float]
ParameterType = Literal["int", "float", "string", "bool"]
Identifier = int | str

WEB_MERCATOR = 3857
WGS84 = 4326

DEFAULT_BUFFER = 64
DEFAULT_EXTENT = 4096
DEFAULT_TILE_SIZE = 256


@dataclasses.dataclass(frozen=True)
class Tile:
    """A tile addressed by zoom, column and row in a tiling scheme.

    Row 0 is the northernmost row. The tiling scheme (world extent) is
    chosen from ``srid``; see tilequery.services.tile_geometry.

    Attributes:
        z: Zoom level.
        x: Tile column.
        y: Tile row.
        buffer: Envelope padding in MVT pixels, measured against ``extent``.
        srid: Spatial reference of the tiling scheme.
        extent: MVT coordinate units per tile side.
        tile_size: Rendered tile side in pixels, used for pixel sizes and
            the scale denominator.
    """

    z: int
    x: int
    y: int
    buffer: int = DEFAULT_BUFFER
    srid: int = WEB_MERCATOR
    extent: int = DEFAULT_EXTENT
    tile_size: int = DEFAULT_TILE_SIZE

    @property
    def zoom(self) -> int:
        return self.z

    @property
    def column(self) -> int:
        return self.x

    @property
    def row(self) -> int:
        return self.y


@dataclasses.dataclass(frozen=True)
class QueryParameter:
    """A caller-supplied parameter bound into a query.

    Attributes:
        token: Text matched literally in the SQL template, e.g. ``!CLASS!``.
        sql: Fragment replacing the token. A single ``?`` marks where the
            positional placeholder goes; an empty fragment elides the token.
        value: Value bound to the placeholder. ``None`` binds SQL NULL.
    """

    token: str
    sql: str
    value: Any = None


@dataclasses.dataclass(frozen=True)
class QueryParameterDefinition:
    """Declares a parameter a layer accepts from tile requests.

    Attributes:
        name: Request-side name of the parameter (e.g. a query string key).
        token: Token the parameter replaces in the layer SQL.
        type: Type the raw request value is parsed into.
        sql: Fragment used when a value is supplied.
        default_value: Value used when the request omits the parameter.
        default_sql: Fragment used when the request omits the parameter.
            Takes precedence over ``default_value``.
    """

    name: str
    token: str
    type: ParameterType = "string"
    sql: str = "?"
    default_value: Any = None
    default_sql: str | None = None


@dataclasses.dataclass(frozen=True)
class Layer:
    """A queryable feature layer.

    A layer is either SQL-defined (``sql`` holds a template with tokens) or
    table-defined (``table`` and optional ``fields``), in which case the
    template is generated by tilequery.services.tiles_postgis.

    Attributes:
        name: Layer name.
        sql: Raw SQL template, or None for table-defined layers.
        geom_field: Name of the geometry column in query results.
        id_field: Name of the feature identifier column in query results.
        srid: Spatial reference of the layer's geometries.
        table: Optionally schema-qualified table for table-defined layers.
        fields: Attribute columns selected for table-defined layers.
        geometry_type: Geometry type name, substituted for ``!GEOM_TYPE!``.
        parameters: Parameters the layer accepts from tile requests.
    """

    name: str
    sql: str | None = None
    geom_field: str = "geom"
    id_field: str = "gid"
    srid: int = WEB_MERCATOR
    table: str | None = None
    fields: tuple[str, ...] = ()
    geometry_type: str | None = None
    parameters: tuple[QueryParameterDefinition, ...] = ()


@dataclasses.dataclass(frozen=True)
class ColumnDescription:
    """Name and type of a result column.

    Attributes:
        name: Column name as reported by the driver.
        type_oid: PostgreSQL type OID.
        type_name: Type name, used when the OID is not a built-in one.
    """

    name: str
    type_oid: int
    type_name: str | None = None


@dataclasses.dataclass(frozen=True)
class DecodedRow:
    """A result row split into geometry, identifier and attribute tags."""

    geometry: bytes | None
    identifier: Identifier | None
    tags: dict[str, Any]

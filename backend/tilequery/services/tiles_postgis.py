"""PostGIS feature query builder for tile requests.

This module turns a layer definition and a tile into the final SQL text and
positional argument list handed to the database. Building a query runs
three stages:

1. build_layer_sql() produces the layer's SQL template, either the raw
   template of a SQL-defined layer or a generated SELECT for a table layer;
2. tokens.replace_tokens() binds the template to the tile (``!BBOX!``,
   ``!ZOOM!``, ...);
3. params.bind_parameters() replaces request parameter tokens with ``$N``
   placeholders and collects their values.

Generated SQL selects the geometry as WKB via ST_AsBinary, so rows can be
fed straight to tilequery.services.decoder.

Example:
    Build the query for a table layer:
        >>> from tilequery.models import Layer, Tile
        >>> from tilequery.services.tiles_postgis import build_tile_query
        >>> layer = Layer(name="parks", table="public.parks", fields=("name",))
        >>> query = build_tile_query(layer, Tile(z=10, x=512, y=340))
        >>> cursor_sql, args = query

    The generated template:
        SELECT ST_AsBinary("geom") AS "geom", "gid", "name"
        FROM "public"."parks" WHERE "geom" && !BBOX!
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, NamedTuple

from tilequery import errors
from tilequery import models
from tilequery.services import params as params_service
from tilequery.services import tokens

if TYPE_CHECKING:
    from collections.abc import Mapping

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class BoundQuery(NamedTuple):
    """Final SQL text and its positional arguments."""

    sql: str
    args: tuple[Any, ...]


def quote_identifier(name: str) -> str:
    """Validate and double-quote an optionally schema-qualified identifier.

    Only letters, digits and underscores are accepted in each part, so the
    quoted result is always safe to splice into SQL.

    Raises:
        TemplateError: if ``name`` is not a plain identifier.

    Example:
        >>> quote_identifier("public.parks")
        '"public"."parks"'
    """
    parts = name.split(".")
    if len(parts) > 2 or not all(IDENTIFIER_PATTERN.match(p) for p in parts):
        raise errors.TemplateError(f"invalid SQL identifier {name!r}")
    return ".".join(f'"{p}"' for p in parts)


def build_layer_sql(layer: models.Layer) -> str:
    """Return the SQL template of a layer.

    SQL-defined layers return their template unchanged. Table layers get a
    generated query selecting the WKB geometry, the identifier and the
    configured fields of every row intersecting ``!BBOX!``.

    Raises:
        TemplateError: if the layer defines both or neither of ``sql`` and
            ``table``, or a table/field name is not a plain identifier.
    """
    if (layer.sql is None) == (layer.table is None):
        raise errors.TemplateError(
            f"layer {layer.name!r} must define exactly one of sql or table"
        )
    if layer.sql is not None:
        return layer.sql

    geom = quote_identifier(layer.geom_field)
    columns = [f"ST_AsBinary({geom}) AS {geom}"]
    selected = {layer.geom_field}
    for name in (layer.id_field, *layer.fields):
        if name and name not in selected:
            columns.append(quote_identifier(name))
            selected.add(name)
    table = quote_identifier(layer.table)  # type: ignore[arg-type]
    return (
        f"SELECT {', '.join(columns)} FROM {table} "
        f"WHERE {geom} && {tokens.BBOX_TOKEN}"
    )


def request_parameters(
    layer: models.Layer, raw_values: Mapping[str, str]
) -> dict[str, models.QueryParameter]:
    """Resolve raw request values against the layer's parameter definitions.

    Raises:
        ParameterBindingError: if a definition is invalid, a required value
            is missing or a value does not parse.
    """
    return params_service.resolve_parameters(layer.parameters, raw_values)


def build_tile_query(
    layer: models.Layer,
    tile: models.Tile,
    params: Mapping[str, models.QueryParameter] | None = None,
    with_buffer: bool = True,
) -> BoundQuery:
    """Build the SQL and arguments fetching a layer's features for a tile.

    Table layers always contain ``!BBOX!``; SQL-defined layers are trusted
    to bound themselves.

    Args:
        layer: Layer to query.
        tile: Tile the features are fetched for.
        params: Request parameters keyed by token.
        with_buffer: Use the buffered tile envelope for ``!BBOX!``.

    Returns:
        BoundQuery with ``$N`` placeholders matching ``args``.

    Raises:
        TemplateError: for an invalid layer definition.
        GeometryComputationError: for an invalid tile.
        ParameterBindingError: for a malformed parameter fragment.
    """
    template = build_layer_sql(layer)
    sql = tokens.replace_tokens(
        template,
        layer,
        tile,
        with_buffer,
        require_bbox=layer.table is not None,
    )
    args: list[Any] = []
    sql = params_service.bind_parameters(params, sql, args)
    return BoundQuery(sql=sql, args=tuple(args))

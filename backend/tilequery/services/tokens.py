"""Built-in token substitution for layer SQL templates.

Layer SQL marks tile-dependent values with ``!TOKEN!`` markers. Tokens are
case-insensitive: every marker is uppercased before lookup, and the rest of
the template is left exactly as written. Recognized built-ins are replaced
with SQL literals computed from the tile; any other marker is left in place
for the named parameter binder (tilequery.services.params).

Built-in tokens:
    - ``!BBOX!``: ``ST_MakeEnvelope(minx,miny,maxx,maxy,srid)`` for the tile
    - ``!ZOOM!`` / ``!Z!``: zoom level
    - ``!X!`` / ``!Y!``: tile column and row
    - ``!PIXEL_WIDTH!`` / ``!PIXEL_HEIGHT!``: pixel size in map units
    - ``!SCALE_DENOMINATOR!``: map scale denominator
    - ``!ID_FIELD!`` / ``!GEOM_FIELD!`` / ``!GEOM_TYPE!``: layer settings

Example:
    Bind a template to a tile:
        >>> from tilequery.models import Layer, Tile
        >>> from tilequery.services import tokens
        >>> tokens.replace_tokens(
        ...     "SELECT * FROM foo WHERE geom && !bbox! AND z = !Zoom!",
        ...     Layer(name="foo"),
        ...     Tile(z=2, x=1, y=1),
        ... )
        'SELECT * FROM foo WHERE geom && ST_MakeEnvelope(-1.017529720390625e+07,-156543.03390625,156543.03390625,1.017529720390625e+07,3857) AND z = 2'
"""

from __future__ import annotations

import dataclasses
import logging
import re
import types
from typing import TYPE_CHECKING

from tilequery import errors
from tilequery import models
from tilequery.services import tile_geometry

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"![A-Za-z0-9_-]+!")

BBOX_TOKEN = "!BBOX!"


@dataclasses.dataclass(frozen=True)
class TokenContext:
    """Inputs available to built-in token handlers."""

    layer: models.Layer | None
    tile: models.Tile
    with_buffer: bool


def _bbox(ctx: TokenContext) -> str:
    minx, miny, maxx, maxy = tile_geometry.bounding_box(
        ctx.tile, with_buffer=ctx.with_buffer
    )
    coords = ",".join(
        tile_geometry.format_float(v) for v in (minx, miny, maxx, maxy)
    )
    envelope = f"ST_MakeEnvelope({coords},{ctx.tile.srid})"
    if ctx.layer is None or ctx.layer.srid == ctx.tile.srid:
        return envelope
    return f"ST_Transform({envelope},{ctx.layer.srid})"


def _zoom(ctx: TokenContext) -> str:
    return str(ctx.tile.z)


def _x(ctx: TokenContext) -> str:
    return str(ctx.tile.x)


def _y(ctx: TokenContext) -> str:
    return str(ctx.tile.y)


def _pixel_width(ctx: TokenContext) -> str:
    return tile_geometry.format_float(
        tile_geometry.pixel_width(ctx.tile), "f"
    )


def _pixel_height(ctx: TokenContext) -> str:
    return tile_geometry.format_float(
        tile_geometry.pixel_height(ctx.tile), "f"
    )


def _scale_denominator(ctx: TokenContext) -> str:
    return tile_geometry.format_float(
        tile_geometry.scale_denominator(ctx.tile), "f"
    )


def _require_layer(ctx: TokenContext, token: str) -> models.Layer:
    if ctx.layer is None:
        raise errors.TemplateError(f"{token} requires a layer")
    return ctx.layer


def _id_field(ctx: TokenContext) -> str:
    return _require_layer(ctx, "!ID_FIELD!").id_field


def _geom_field(ctx: TokenContext) -> str:
    return _require_layer(ctx, "!GEOM_FIELD!").geom_field


def _geom_type(ctx: TokenContext) -> str:
    layer = _require_layer(ctx, "!GEOM_TYPE!")
    if not layer.geometry_type:
        raise errors.TemplateError(
            f"!GEOM_TYPE! used but layer {layer.name!r} has no geometry type"
        )
    return layer.geometry_type


BUILTIN_TOKENS: Mapping[str, Callable[[TokenContext], str]] = (
    types.MappingProxyType(
        {
            BBOX_TOKEN: _bbox,
            "!ZOOM!": _zoom,
            "!Z!": _zoom,
            "!X!": _x,
            "!Y!": _y,
            "!PIXEL_WIDTH!": _pixel_width,
            "!PIXEL_HEIGHT!": _pixel_height,
            "!SCALE_DENOMINATOR!": _scale_denominator,
            "!ID_FIELD!": _id_field,
            "!GEOM_FIELD!": _geom_field,
            "!GEOM_TYPE!": _geom_type,
        }
    )
)

RESERVED_TOKENS = frozenset(BUILTIN_TOKENS)


def uppercase_tokens(sql: str) -> str:
    """Uppercase the content of every ``!token!`` marker in ``sql``.

    A ``!`` without a closing partner is not a token and is left as is, as
    is everything outside the markers.

    Example:
        >>> uppercase_tokens("this !lower! case !STrInG!")
        'this !LOWER! case !STRING!'
        >>> uppercase_tokens("unclosed !token")
        'unclosed !token'
    """
    return TOKEN_PATTERN.sub(lambda m: m.group(0).upper(), sql)


def replace_tokens(
    sql: str,
    layer: models.Layer | None,
    tile: models.Tile,
    with_buffer: bool = True,
    *,
    require_bbox: bool = False,
    builtins: Mapping[str, Callable[[TokenContext], str]] = BUILTIN_TOKENS,
) -> str:
    """Replace built-in tokens in a SQL template with tile values.

    Args:
        sql: SQL template.
        layer: Layer the template belongs to. Supplies the envelope SRID and
            the field tokens; may be None for templates without them.
        tile: Tile the query is bound to.
        with_buffer: Use the buffered tile envelope for ``!BBOX!``.
        require_bbox: Fail unless the template contains ``!BBOX!``.
        builtins: Token handler table.

    Returns:
        SQL with every recognized token replaced. Unrecognized tokens are
        uppercased but otherwise kept.

    Raises:
        TemplateError: if ``require_bbox`` is set and ``!BBOX!`` is missing,
            or a field token is used without the layer setting it needs.
        GeometryComputationError: if the tile envelope cannot be computed.
    """
    normalized = uppercase_tokens(sql)
    if require_bbox and BBOX_TOKEN not in normalized:
        name = layer.name if layer is not None else "<anonymous>"
        raise errors.TemplateError(
            f"SQL for layer {name!r} does not contain the {BBOX_TOKEN} token"
        )

    ctx = TokenContext(layer=layer, tile=tile, with_buffer=with_buffer)
    rendered: dict[str, str] = {}

    def substitute(match: re.Match[str]) -> str:
        token = match.group(0)
        handler = builtins.get(token)
        if handler is None:
            return token
        if token not in rendered:
            rendered[token] = handler(ctx)
        return rendered[token]

    result = TOKEN_PATTERN.sub(substitute, normalized)
    logger.debug(
        "Replaced tokens %s for tile %d/%d/%d",
        sorted(rendered),
        tile.z,
        tile.x,
        tile.y,
    )
    return result

"""Tile envelope, pixel size and scale computations.

Tiles follow the usual web tiling layout: the world extent of a tiling
scheme is split into ``2**z`` columns and rows, columns counted from the
west edge and rows from the north edge. All functions here are pure and
return unrounded IEEE doubles; the arithmetic is ordered so the results are
bit-for-bit reproducible.

Example:
    Compute the buffered envelope of a Web Mercator tile:
        >>> from tilequery.models import Tile
        >>> from tilequery.services import tile_geometry
        >>> tile = Tile(z=2, x=1, y=1, buffer=64)
        >>> tile_geometry.bounding_box(tile, with_buffer=True)
        (-10175297.20390625, -156543.03390625, 156543.03390625, 10175297.20390625)

    Render a value the way it is substituted into SQL:
        >>> tile_geometry.format_float(-10175297.20390625)
        '-1.017529720390625e+07'
"""

from __future__ import annotations

import dataclasses
import decimal
import math
import types
from typing import TYPE_CHECKING, Literal

from tilequery import errors
from tilequery import models

if TYPE_CHECKING:
    from collections.abc import Mapping

# Beyond this zoom level the tile side nears the double-precision spacing of
# world coordinates and envelopes lose sub-pixel accuracy.
MAX_ZOOM = 30

# Standardized rendering pixel size, in meters (OGC SLD/SE).
STANDARD_PIXEL_SIZE = 0.00028

WEB_MERCATOR_MAX = 20037508.34


@dataclasses.dataclass(frozen=True)
class TilingScheme:
    """World extent and units of a tiling scheme.

    Attributes:
        srid: Spatial reference the scheme is defined in.
        bounds: World extent as (minx, miny, maxx, maxy).
        meters_per_unit: Length of one map unit in meters.
    """

    srid: int
    bounds: models.BBox
    meters_per_unit: float


TILING_SCHEMES: Mapping[int, TilingScheme] = types.MappingProxyType(
    {
        models.WEB_MERCATOR: TilingScheme(
            srid=models.WEB_MERCATOR,
            bounds=(
                -WEB_MERCATOR_MAX,
                -WEB_MERCATOR_MAX,
                WEB_MERCATOR_MAX,
                WEB_MERCATOR_MAX,
            ),
            meters_per_unit=1.0,
        ),
        models.WGS84: TilingScheme(
            srid=models.WGS84,
            bounds=(-180.0, -90.0, 180.0, 90.0),
            meters_per_unit=2 * math.pi * 6378137 / 360,
        ),
    }
)


def tiling_scheme(srid: int) -> TilingScheme:
    """Return the tiling scheme registered for ``srid``.

    Raises:
        GeometryComputationError: if no scheme is registered for the SRID.
    """
    try:
        return TILING_SCHEMES[srid]
    except KeyError:
        raise errors.GeometryComputationError(
            f"no tiling scheme for SRID {srid}"
        ) from None


def _validate(tile: models.Tile) -> None:
    if tile.z < 0 or tile.z > MAX_ZOOM:
        raise errors.GeometryComputationError(
            f"zoom {tile.z} outside supported range 0-{MAX_ZOOM}"
        )
    size = 1 << tile.z
    if not (0 <= tile.x < size and 0 <= tile.y < size):
        raise errors.GeometryComputationError(
            f"tile {tile.z}/{tile.x}/{tile.y} outside the {size}x{size} grid"
        )
    if tile.buffer < 0 or tile.extent <= 0 or tile.tile_size <= 0:
        raise errors.GeometryComputationError(
            "tile buffer must be >= 0 and extent/tile_size must be > 0"
        )


def _check_finite(values: tuple[float, ...]) -> None:
    if not all(math.isfinite(v) for v in values):
        raise errors.GeometryComputationError(
            f"non-finite tile geometry: {values}"
        )


def _resolution(tile: models.Tile) -> tuple[float, float]:
    """Tile side length in map units along x and y."""
    minx, miny, maxx, maxy = tiling_scheme(tile.srid).bounds
    size = 1 << tile.z
    return (maxx - minx) / size, (maxy - miny) / size


def bounding_box(tile: models.Tile, with_buffer: bool = False) -> models.BBox:
    """Compute the envelope of a tile in its spatial reference.

    Args:
        tile: Tile to compute the envelope for.
        with_buffer: Pad the envelope by ``tile.buffer`` MVT pixels on
            every side.

    Returns:
        Envelope as (minx, miny, maxx, maxy).

    Raises:
        GeometryComputationError: if the tile is outside the tiling scheme
            or the computation is not finite.
    """
    _validate(tile)
    world_minx, _, _, world_maxy = tiling_scheme(tile.srid).bounds
    res_x, res_y = _resolution(tile)

    # Each edge is measured from the origin, never from the opposite edge.
    x1 = world_minx + tile.x * res_x
    x2 = world_minx + (tile.x + 1) * res_x
    y1 = world_maxy - tile.y * res_y
    y2 = world_maxy - (tile.y + 1) * res_y
    minx, maxx = min(x1, x2), max(x1, x2)
    miny, maxy = min(y1, y2), max(y1, y2)

    if with_buffer:
        buff_x = res_x / tile.extent * tile.buffer
        buff_y = res_y / tile.extent * tile.buffer
        minx, miny = minx - buff_x, miny - buff_y
        maxx, maxy = maxx + buff_x, maxy + buff_y

    bbox = (minx, miny, maxx, maxy)
    _check_finite(bbox)
    return bbox


def pixel_width(tile: models.Tile) -> float:
    """Width of one rendered pixel in map units."""
    minx, _, maxx, _ = bounding_box(tile)
    return (maxx - minx) / tile.tile_size


def pixel_height(tile: models.Tile) -> float:
    """Height of one rendered pixel in map units."""
    _, miny, _, maxy = bounding_box(tile)
    return (maxy - miny) / tile.tile_size


def scale_denominator(tile: models.Tile) -> float:
    """Map scale denominator for a tile rendered at 0.28mm pixels.

    Map units are converted to meters using the tiling scheme of the tile's
    spatial reference.
    """
    meters_per_unit = tiling_scheme(tile.srid).meters_per_unit
    value = pixel_width(tile) * meters_per_unit / STANDARD_PIXEL_SIZE
    _check_finite((value,))
    return value


def format_float(value: float, style: Literal["g", "f"] = "g") -> str:
    """Format a float with the shortest digits that round-trip.

    ``style="g"`` switches to exponent notation when the decimal exponent is
    below -4 or at least 6 (``-1.017529720390625e+07``); ``style="f"`` always
    writes positional digits (``272989.38669477403``). No digits are ever
    dropped, so parsing the text gives back the identical double.

    Raises:
        GeometryComputationError: if ``value`` is NaN or infinite.
    """
    if not math.isfinite(value):
        raise errors.GeometryComputationError(f"cannot format {value!r}")
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"

    sign, coefficient, exponent = decimal.Decimal(repr(value)).as_tuple()
    digits = list(coefficient)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1  # type: ignore[operator]
    text = "".join(str(d) for d in digits)
    point = len(text) + exponent - 1  # type: ignore[operator]
    prefix = "-" if sign else ""

    if style == "g" and (point < -4 or point >= 6):
        mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
        exp_sign = "-" if point < 0 else "+"
        return f"{prefix}{mantissa}e{exp_sign}{abs(point):02d}"

    if exponent >= 0:  # type: ignore[operator]
        return prefix + text + "0" * exponent  # type: ignore[operator]
    split = len(text) + exponent  # type: ignore[operator]
    if split > 0:
        return f"{prefix}{text[:split]}.{text[split:]}"
    return f"{prefix}0.{'0' * -split}{text}"

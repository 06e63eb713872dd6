"""Exception hierarchy for tile query templating and row decoding.

Every public operation in tilequery either returns a complete result or
raises one of the exceptions below. No operation leaves behind partially
substituted SQL text or a partially populated tag mapping, and none of them
retries: retry policy for transient connection failures belongs to whoever
owns the database connection.

Example:
    Catch any tilequery failure at the request boundary:
        >>> from tilequery import errors
        >>> try:
        ...     query = tiles_postgis.build_tile_query(layer, tile)
        ... except errors.TileQueryError as e:
        ...     print(f"Tile query failed: {e}")
"""

from __future__ import annotations


class TileQueryError(Exception):
    """Base class for all tilequery errors."""


class TemplateError(TileQueryError):
    """Raised for malformed token syntax or a missing required token.

    The most common trigger is strict mode: a template that must be bound
    to a tile envelope but does not contain ``!BBOX!``.
    """


class GeometryComputationError(TileQueryError, ValueError):
    """Raised when tile parameters yield out-of-domain envelope math.

    Covers zoom levels above the precision ceiling, tile coordinates outside
    the ``2**z`` grid, unknown tiling schemes and non-finite results.
    """


class ParameterBindingError(TileQueryError, ValueError):
    """Raised when a query parameter cannot be bound.

    Example:
        A fragment with two substitution markers:
            >>> from tilequery import models
            >>> from tilequery.services import params
            >>> bad = models.QueryParameter("!P!", "a = ? OR b = ?", 1)
            >>> params.bind_parameters({"!P!": bad}, "WHERE !P!", [])
            Traceback (most recent call last):
            ...
            ParameterBindingError: ...
    """


class DecodeError(TileQueryError):
    """Raised when a result row cannot be decoded into a feature.

    Attributes:
        column: Name of the offending column, when known.
        type_name: Database type name or OID of the offending column.
    """

    def __init__(
        self,
        message: str,
        *,
        column: str | None = None,
        type_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.column = column
        self.type_name = type_name

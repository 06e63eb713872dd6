"""Query templating and result decoding for PostGIS vector tiles.

This package translates a tile request into parameterized spatial SQL and
translates the result rows back into features ready for a vector tile
encoder. It does no network I/O of its own: the caller supplies the
database connection and consumes the decoded rows.

- Tile envelope, pixel size and scale denominator computation
- Case-insensitive ``!TOKEN!`` substitution in layer SQL templates
- Named request parameters bound as ``$N`` positional placeholders
- Row decoding into geometry, feature id and flat attribute tags,
  including hstore flattening

See the module docstrings under tilequery.services for details.
"""

from tilequery.errors import (
    DecodeError,
    GeometryComputationError,
    ParameterBindingError,
    TemplateError,
    TileQueryError,
)
from tilequery.models import (
    ColumnDescription,
    DecodedRow,
    Layer,
    QueryParameter,
    QueryParameterDefinition,
    Tile,
)

__all__ = [
    "ColumnDescription",
    "DecodeError",
    "DecodedRow",
    "GeometryComputationError",
    "Layer",
    "ParameterBindingError",
    "QueryParameter",
    "QueryParameterDefinition",
    "TemplateError",
    "Tile",
    "TileQueryError",
]

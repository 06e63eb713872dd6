"""Named query parameters bound as positional placeholders.

Layers may accept extra parameters from tile requests (for example a
``?class=primary`` filter). Each parameter replaces a token in the layer SQL
with a SQL fragment whose single ``?`` marker becomes a numbered
placeholder (``$1``, ``$2``, ...). Values are never spliced into the SQL
text, so request input cannot inject SQL.

Placeholders are numbered in token order, so the same input always
produces the same SQL text and argument list.

Example:
    Bind one parameter:
        >>> from tilequery.models import QueryParameter
        >>> from tilequery.services import params
        >>> args: list[object] = []
        >>> params.bind_parameters(
        ...     {"!CLASS!": QueryParameter("!CLASS!", "class = ?", "primary")},
        ...     "SELECT * FROM roads WHERE !CLASS!",
        ...     args,
        ... )
        'SELECT * FROM roads WHERE class = $1'
        >>> args
        ['primary']
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from tilequery import errors
from tilequery import models
from tilequery.services import tokens

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, MutableSequence

MARKER = "?"

PARAMETER_TOKEN_PATTERN = re.compile(r"^![A-Z0-9_-]+!$")

_TRUE = frozenset({"true", "t", "1", "yes", "y", "on"})
_FALSE = frozenset({"false", "f", "0", "no", "n", "off"})


def _check_fragment(token: str, fragment: str) -> None:
    if fragment.count(MARKER) > 1:
        raise errors.ParameterBindingError(
            f"SQL fragment for {token} has {fragment.count(MARKER)} "
            f"'{MARKER}' markers, expected at most one: {fragment!r}"
        )


def bind_parameters(
    params: Mapping[str, models.QueryParameter] | None,
    sql: str,
    args: MutableSequence[Any],
) -> str:
    """Replace parameter tokens in ``sql`` and collect their values.

    Parameters are applied in sorted order of their own ``token``; the
    mapping keys only identify them. For every token that occurs in
    ``sql``:

    - a fragment containing ``?`` gets the next ``$N`` placeholder
      (``N = len(args) + 1``) and the value is appended to ``args``, even
      when it is None;
    - an empty fragment removes the token and binds nothing;
    - any other fragment is inlined as is and binds nothing.

    Args:
        params: Parameters keyed by token. None or empty leaves ``sql`` and
            ``args`` untouched.
        sql: SQL text containing parameter tokens.
        args: Positional argument list, extended in place.

    Returns:
        SQL with every supplied token replaced.

    Raises:
        ParameterBindingError: if a fragment contains more than one marker.
            ``args`` is left unchanged.
    """
    if not params:
        return sql

    ordered = sorted(params.values(), key=lambda p: p.token)
    for param in ordered:
        _check_fragment(param.token, param.sql)

    bound: list[Any] = []
    for param in ordered:
        token = param.token
        if token not in sql:
            continue
        fragment = param.sql
        if MARKER in fragment:
            placeholder = f"${len(args) + len(bound) + 1}"
            fragment = fragment.replace(MARKER, placeholder, 1)
            bound.append(param.value)
        sql = sql.replace(token, fragment)

    args.extend(bound)
    return sql


def parse_value(
    definition: models.QueryParameterDefinition, raw: str
) -> Any:
    """Parse a raw request value into the definition's type.

    Raises:
        ParameterBindingError: if ``raw`` is not a valid value of the type.
    """
    text = raw.strip()
    try:
        if definition.type == "int":
            return int(text)
        if definition.type == "float":
            return float(text)
    except ValueError:
        raise errors.ParameterBindingError(
            f"parameter {definition.name!r} expects {definition.type}, "
            f"got {raw!r}"
        ) from None
    if definition.type == "bool":
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise errors.ParameterBindingError(
            f"parameter {definition.name!r} expects bool, got {raw!r}"
        )
    return raw


def to_parameter(
    definition: models.QueryParameterDefinition, raw: str | None
) -> models.QueryParameter:
    """Build the QueryParameter for one request value.

    A missing value falls back to ``default_sql``, then ``default_value``.

    Raises:
        ParameterBindingError: if the value is missing with no default, or
            cannot be parsed.
    """
    if raw is None:
        if definition.default_sql is not None:
            return models.QueryParameter(
                definition.token, definition.default_sql, None
            )
        if definition.default_value is not None:
            return models.QueryParameter(
                definition.token, definition.sql, definition.default_value
            )
        raise errors.ParameterBindingError(
            f"missing required parameter {definition.name!r}"
        )
    return models.QueryParameter(
        definition.token, definition.sql, parse_value(definition, raw)
    )


def validate_definitions(
    definitions: Iterable[models.QueryParameterDefinition],
) -> None:
    """Check a layer's parameter definitions for conflicts.

    Raises:
        ParameterBindingError: on a malformed or reserved token, a duplicate
            name or token, or a fragment with more than one marker.
    """
    names: set[str] = set()
    seen_tokens: set[str] = set()
    for definition in definitions:
        token = definition.token
        if not PARAMETER_TOKEN_PATTERN.match(token):
            raise errors.ParameterBindingError(
                f"invalid token {token!r}: expected uppercase !NAME!"
            )
        if token in tokens.RESERVED_TOKENS:
            raise errors.ParameterBindingError(
                f"token {token} is reserved for built-in substitution"
            )
        if token in seen_tokens or definition.name in names:
            raise errors.ParameterBindingError(
                f"duplicate parameter {definition.name!r} ({token})"
            )
        _check_fragment(token, definition.sql)
        if definition.default_sql is not None:
            _check_fragment(token, definition.default_sql)
        seen_tokens.add(token)
        names.add(definition.name)


def resolve_parameters(
    definitions: Iterable[models.QueryParameterDefinition],
    raw_values: Mapping[str, str],
) -> dict[str, models.QueryParameter]:
    """Turn request values into a token-keyed parameter mapping.

    Request values without a matching definition are ignored.

    Example:
        >>> from tilequery.models import QueryParameterDefinition
        >>> defs = [QueryParameterDefinition("limit", "!LIMIT!", "int",
        ...                                  sql="LIMIT ?", default_sql="")]
        >>> resolve_parameters(defs, {"limit": "10"})["!LIMIT!"].value
        10
    """
    definitions = list(definitions)
    validate_definitions(definitions)
    return {
        d.token: to_parameter(d, raw_values.get(d.name)) for d in definitions
    }

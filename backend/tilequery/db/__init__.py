"""Database access for tile queries.

This module re-exports the executor protocol and constructors from
tilequery.db.database, giving callers a stable import location for the
query execution collaborator.

Example:
    Fetch a layer's features for a tile:
        >>> from tilequery.db import fetch_features, get_connection, get_executor
        >>> conn = get_connection(settings)
        >>> features = fetch_features(get_executor(conn, settings), layer, tile)
"""

from tilequery.db.database import (
    PostgisExecutor,
    QueryExecutorProtocol,
    QueryResult,
    fetch_features,
    get_connection,
    get_executor,
    hstore_oids,
    type_registry,
)

__all__ = [
    "PostgisExecutor",
    "QueryExecutorProtocol",
    "QueryResult",
    "fetch_features",
    "get_connection",
    "get_executor",
    "hstore_oids",
    "type_registry",
]

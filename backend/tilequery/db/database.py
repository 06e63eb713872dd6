"""psycopg2-backed query execution for tile queries."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, NamedTuple, Protocol

import psycopg2
import psycopg2.extensions
import psycopg2.extras

from tilequery import models
from tilequery.services import decoder
from tilequery.services import tiles_postgis

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from tilequery.core import config

logger = logging.getLogger(__name__)


class QueryResult(NamedTuple):
    """Column descriptions and materialized rows of one query."""

    descriptions: tuple[models.ColumnDescription, ...]
    rows: list[tuple[Any, ...]]


class QueryExecutorProtocol(Protocol):
    """Protocol interface for running a bound tile query.

    Implementations accept SQL with ``$N`` placeholders and the matching
    positional arguments, and release their cursor whether or not the
    query succeeds.
    """

    def execute(self, sql: str, args: Sequence[Any] = ()) -> QueryResult: ...


class PostgisExecutor(QueryExecutorProtocol):
    """Run tile queries on a psycopg2 connection.

    psycopg2 binds client-side ``%s`` parameters, while tile queries use
    server-side ``$N`` placeholders. Queries with arguments are therefore
    run as a prepared statement: ``PREPARE`` with the SQL text as is, then
    ``EXECUTE`` with the arguments, then ``DEALLOCATE``. Prepared statements
    outlive transactions, so the statement is deallocated on failure too.
    Inside a transaction the ``EXECUTE`` runs under a savepoint, which lets
    the ``DEALLOCATE`` through after an error.

    The statement timeout is scoped with ``SET LOCAL`` on a transactional
    connection. On an autocommit connection it is set for the session and
    reset once the query finishes.

    The executor does not own the connection: it never commits, rolls back
    or closes it.

    Example:
        Run a tile query:
            >>> executor = PostgisExecutor(conn, statement_timeout_ms=5000)
            >>> result = executor.execute(
            ...     "SELECT gid FROM roads WHERE class = $1", ("primary",)
            ... )
            >>> for row in result.rows:
            ...     print(row)
    """

    def __init__(
        self,
        connection: psycopg2.extensions.connection,
        statement_timeout_ms: int | None = None,
    ) -> None:
        """Initialize executor with a connection.

        Args:
            connection: Open psycopg2 connection.
            statement_timeout_ms: Optional per-query deadline.
        """
        self.connection = connection
        self.statement_timeout_ms = statement_timeout_ms

    def execute(self, sql: str, args: Sequence[Any] = ()) -> QueryResult:
        logger.debug("Executing tile query with %d args: %s", len(args), sql)
        transactional = not self.connection.autocommit
        with self.connection.cursor() as cur:
            if self.statement_timeout_ms is not None:
                scope = "LOCAL " if transactional else ""
                cur.execute(
                    f"SET {scope}statement_timeout = %s",
                    (self.statement_timeout_ms,),
                )
            try:
                if not args:
                    cur.execute(sql)
                    return QueryResult(
                        decoder.descriptions_from_cursor(cur), cur.fetchall()
                    )
                return self._execute_prepared(cur, sql, args, transactional)
            finally:
                if self.statement_timeout_ms is not None and not transactional:
                    cur.execute("RESET statement_timeout")

    def _execute_prepared(
        self,
        cur: psycopg2.extensions.cursor,
        sql: str,
        args: Sequence[Any],
        transactional: bool,
    ) -> QueryResult:
        name = f"tilequery_{uuid.uuid4().hex}"
        cur.execute(f"PREPARE {name} AS {sql}")
        if transactional:
            cur.execute(f"SAVEPOINT {name}")
        placeholders = ", ".join(["%s"] * len(args))
        try:
            cur.execute(f"EXECUTE {name} ({placeholders})", tuple(args))
            result = QueryResult(
                decoder.descriptions_from_cursor(cur), cur.fetchall()
            )
        except psycopg2.Error:
            logger.warning("Tile query %s failed", name)
            if transactional:
                # An aborted transaction accepts nothing but a rollback.
                cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
            cur.execute(f"DEALLOCATE {name}")
            raise
        if transactional:
            cur.execute(f"RELEASE SAVEPOINT {name}")
        cur.execute(f"DEALLOCATE {name}")
        return result


def get_connection(
    settings: config.Settings,
) -> psycopg2.extensions.connection:
    """Create a synchronous psycopg2 extensions connection.

    Args:
        settings: Application settings containing database connection URL.

    Returns:
        psycopg2 extensions connection object for direct database access.
    """
    return psycopg2.connect(settings.database_url)


def get_executor(
    connection: psycopg2.extensions.connection,
    settings: config.Settings,
) -> PostgisExecutor:
    """Factory function to create an executor honoring the settings."""
    return PostgisExecutor(
        connection, statement_timeout_ms=settings.statement_timeout_ms
    )


def hstore_oids(
    connection: psycopg2.extensions.connection,
) -> tuple[int, ...]:
    """Return the OIDs of the hstore type in the connected database.

    Empty when the hstore extension is not installed.
    """
    oids, _array_oids = psycopg2.extras.HstoreAdapter.get_oids(connection)
    return tuple(oids)


def type_registry(
    connection: psycopg2.extensions.connection,
) -> decoder.TypeRegistry:
    """Build a type registry including the database's hstore OIDs."""
    return decoder.DEFAULT_REGISTRY.with_hstore(hstore_oids(connection))


def fetch_features(
    executor: QueryExecutorProtocol,
    layer: models.Layer,
    tile: models.Tile,
    params: Mapping[str, models.QueryParameter] | None = None,
    registry: decoder.TypeRegistry = decoder.DEFAULT_REGISTRY,
) -> list[models.DecodedRow]:
    """Query a layer's features for a tile and decode every row.

    Args:
        executor: Query executor.
        layer: Layer to query.
        tile: Tile to fetch features for.
        params: Request parameters keyed by token.
        registry: Type registry used to classify result columns.

    Returns:
        Decoded rows in result order.

    Raises:
        TileQueryError: if building the query or decoding a row fails.
        psycopg2.Error: if the query itself fails.
    """
    query = tiles_postgis.build_tile_query(layer, tile, params)
    result = executor.execute(query.sql, query.args)
    features = [
        decoder.decipher_fields(
            layer.geom_field,
            layer.id_field,
            result.descriptions,
            row,
            registry,
        )
        for row in result.rows
    ]
    logger.debug(
        "Layer %s tile %d/%d/%d: %d features",
        layer.name,
        tile.z,
        tile.x,
        tile.y,
        len(features),
    )
    return features

"""Streaming SQL engine client.

This wraps a psycopg2 connection pool so the listener services never touch the
driver directly and tests can substitute a fake engine.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2 import sql
from psycopg2.pool import PoolError, ThreadedConnectionPool

from mz_listeners.service.engine import statements
from mz_listeners.service.engine.errors import EngineUnavailable, classify
from mz_listeners.service.engine.statements import TriggerProjection
from mz_listeners.service.listeners.predicate import PredicateTerm
from mz_listeners.service.listeners.triggers import TriggerMessage

logger = logging.getLogger(__name__)

# SUBSCRIBE rows lead with the engine's own progress columns.
_SUBSCRIBE_META_COLUMNS = 2


class EngineClient:
    """Small wrapper around a pooled engine connection for listener DDL."""

    def __init__(
        self,
        *,
        dsn: str,
        min_connections: int = 1,
        max_connections: int = 16,
        pool: ThreadedConnectionPool | None = None,
    ) -> None:
        if pool is not None:
            self._pool = pool
        else:
            if not dsn:
                raise ValueError("Engine DSN is required")
            try:
                self._pool = ThreadedConnectionPool(min_connections, max_connections, dsn=dsn)
            except psycopg2.Error as e:
                raise classify(e) from e
        self._closed = False

    @contextmanager
    def _connection(self, *, autocommit: bool = True) -> Iterator[Any]:
        try:
            conn = self._pool.getconn()
        except PoolError as e:
            raise EngineUnavailable(str(e)) from e
        except psycopg2.Error as e:
            raise classify(e) from e

        broken = False
        try:
            conn.autocommit = autocommit
            yield conn
        except psycopg2.Error as e:
            error = classify(e)
            broken = isinstance(error, EngineUnavailable) or bool(getattr(conn, "closed", 0))
            raise error from e
        finally:
            self._pool.putconn(conn, close=broken)

    def execute(self, statement: sql.Composable) -> None:
        """Run one DDL statement in autocommit mode."""

        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(statement)

    def create_view(
        self,
        *,
        name: str,
        source: str,
        terms: Sequence[PredicateTerm],
        projection: TriggerProjection,
    ) -> None:
        self.execute(
            statements.create_view(name=name, source=source, terms=terms, projection=projection)
        )
        logger.debug("View created", extra={"view_name": name})

    def create_sink(self, *, name: str, view: str, broker: str, topic: str) -> None:
        self.execute(statements.create_sink(name=name, view=view, broker=broker, topic=topic))
        logger.debug("Sink created", extra={"sink_name": name, "view_name": view})

    def drop_view(self, name: str) -> None:
        self.execute(statements.drop_view(name))
        logger.debug("View dropped", extra={"view_name": name})

    def drop_sink(self, name: str) -> None:
        self.execute(statements.drop_sink(name))
        logger.debug("Sink dropped", extra={"sink_name": name})

    def subscribe_first(
        self, view: str, *, timeout_seconds: float | None = None
    ) -> TriggerMessage | None:
        """Block until the view emits a row and return it.

        Returns None if `timeout_seconds` elapses first. The cursor lives in a
        transaction that is always rolled back, so nothing is left behind.
        """

        cursor_name = f"tail_{uuid.uuid4().hex}"
        with self._connection(autocommit=False) as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(statements.declare_subscribe(cursor_name, view))
                    cur.execute(statements.fetch_one(cursor_name, timeout_seconds=timeout_seconds))
                    row = cur.fetchone()
            finally:
                conn.rollback()

        if row is None:
            return None

        view_name, sink_name, workflow_id, body, timestamp = row[_SUBSCRIBE_META_COLUMNS:]
        return TriggerMessage(
            view_name=view_name,
            sink_name=sink_name,
            workflow_id=str(workflow_id),
            body=body,
            timestamp=int(timestamp),
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._pool.closeall()
        except PoolError:
            logger.debug("Engine pool already closed")

    def __enter__(self) -> EngineClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

"""DDL composition for listener views and sinks.

Every caller-provided value reaches the engine as a `sql.Literal` and every
object name as a `sql.Identifier`; nothing is formatted into the SQL text.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from psycopg2 import sql

from mz_listeners.service.listeners.predicate import Operator, PredicateTerm

# Event-log payloads arrive as UTF-8 JSON bytes in a single `data` column.
_DECODED_SOURCE = "SELECT CONVERT_FROM(data, 'utf8')::jsonb AS data FROM {source}"


@dataclass(frozen=True, slots=True)
class TriggerProjection:
    """Constant columns every listener view projects next to the matched row.

    Together with `body` and `timestamp` these make up the trigger message the
    sink publishes, so the schema is fixed here once for all sinks.
    """

    view_name: str
    sink_name: str
    workflow_id: str


def _field(name: str) -> sql.Composable:
    return sql.SQL("data->>{}").format(sql.Literal(name))


def term_condition(term: PredicateTerm) -> sql.Composable:
    field = _field(term.field)

    if term.operator is Operator.EQ:
        return sql.SQL("{} = {}").format(field, sql.Literal(term.value))

    if term.operator is Operator.IN:
        values = term.value
        if not isinstance(values, tuple) or not values:
            raise ValueError(f"IN term needs a non-empty tuple: {term!r}")
        return sql.SQL("{} IN ({})").format(
            field, sql.SQL(", ").join(sql.Literal(v) for v in values)
        )

    if term.operator is Operator.GTE:
        if not isinstance(term.value, int):
            raise ValueError(f">= term needs an integer bound: {term!r}")
        return sql.SQL("({})::bigint >= {}").format(field, sql.Literal(term.value))

    raise ValueError(f"Unsupported operator: {term.operator}")


def where_clause(terms: Sequence[PredicateTerm]) -> sql.Composable:
    if not terms:
        raise ValueError("A listener filter needs at least one term")
    return sql.SQL(" AND ").join(term_condition(t) for t in terms)


def create_view(
    *,
    name: str,
    source: str,
    terms: Sequence[PredicateTerm],
    projection: TriggerProjection,
) -> sql.Composable:
    return sql.SQL(
        "CREATE MATERIALIZED VIEW {name} AS "
        "SELECT "
        "{view_name} AS view_name, "
        "{sink_name} AS sink_name, "
        "{workflow_id} AS workflow_id, "
        "data->>'body' AS body, "
        "(data->>'timestamp')::bigint AS {timestamp} "
        "FROM (" + _DECODED_SOURCE + ") AS events "
        "WHERE {where}"
    ).format(
        name=sql.Identifier(name),
        view_name=sql.Literal(projection.view_name),
        sink_name=sql.Literal(projection.sink_name),
        workflow_id=sql.Literal(projection.workflow_id),
        timestamp=sql.Identifier("timestamp"),
        source=sql.Identifier(source),
        where=where_clause(terms),
    )


def create_sink(*, name: str, view: str, broker: str, topic: str) -> sql.Composable:
    return sql.SQL(
        "CREATE SINK {name} FROM {view} INTO KAFKA BROKER {broker} TOPIC {topic} FORMAT JSON"
    ).format(
        name=sql.Identifier(name),
        view=sql.Identifier(view),
        broker=sql.Literal(broker),
        topic=sql.Literal(topic),
    )


def drop_view(name: str) -> sql.Composable:
    return sql.SQL("DROP MATERIALIZED VIEW {}").format(sql.Identifier(name))


def drop_sink(name: str) -> sql.Composable:
    return sql.SQL("DROP SINK {}").format(sql.Identifier(name))


def declare_subscribe(cursor: str, view: str) -> sql.Composable:
    return sql.SQL("DECLARE {} CURSOR FOR SUBSCRIBE {}").format(
        sql.Identifier(cursor), sql.Identifier(view)
    )


def fetch_one(cursor: str, *, timeout_seconds: float | None = None) -> sql.Composable:
    if timeout_seconds is None:
        return sql.SQL("FETCH 1 {}").format(sql.Identifier(cursor))
    return sql.SQL("FETCH 1 {} WITH (timeout = {})").format(
        sql.Identifier(cursor), sql.Literal(f"{timeout_seconds:g}s")
    )

"""Unit tests for listener DDL composition.

Rendering a composed statement to text needs a live connection, so these
tests inspect the composition itself: selector values must only ever appear
as `Literal`s and object names as `Identifier`s.
"""

from __future__ import annotations

import uuid

import pytest
from psycopg2 import sql

from mz_listeners.service.engine import statements
from mz_listeners.service.engine.statements import TriggerProjection
from mz_listeners.service.listeners.predicate import Operator, PredicateTerm, Selectors, build_spec


def _flatten(composable: sql.Composable) -> list[sql.Composable]:
    if isinstance(composable, sql.Composed):
        out: list[sql.Composable] = []
        for part in composable.seq:
            out.extend(_flatten(part))
        return out
    return [composable]


def _literals(composable: sql.Composable) -> list[object]:
    return [p.wrapped for p in _flatten(composable) if isinstance(p, sql.Literal)]


def _identifiers(composable: sql.Composable) -> list[tuple[str, ...]]:
    return [p.strings for p in _flatten(composable) if isinstance(p, sql.Identifier)]


def _sql_text(composable: sql.Composable) -> str:
    return "".join(p.string for p in _flatten(composable) if isinstance(p, sql.SQL))


def test_create_view_keeps_selector_values_out_of_sql_text() -> None:
    hostile_type = "x') OR 1=1; DROP SOURCE events_source; --"
    spec = build_spec(
        Selectors(
            resource_id=uuid.UUID("1a34b742-1ec4-11ed-861d-0242ac120002"),
            lead_id=uuid.UUID("1f486320-1ec4-11ed-861d-0242ac120002"),
            types=frozenset({"tg_start", hostile_type}),
            since_timestamp=1_700_000_000,
        )
    )
    projection = TriggerProjection(
        view_name=spec.view_name, sink_name=spec.sink_name, workflow_id="wf-1"
    )

    statement = statements.create_view(
        name=spec.view_name, source="events_source", terms=spec.terms, projection=projection
    )

    text = _sql_text(statement)
    assert text.startswith("CREATE MATERIALIZED VIEW ")
    assert "CONVERT_FROM(data, 'utf8')::jsonb" in text
    assert hostile_type not in text
    assert str(spec.resource_id) not in text

    literals = _literals(statement)
    assert hostile_type in literals
    assert "tg_start" in literals
    assert str(spec.resource_id) in literals
    assert str(spec.lead_id) in literals
    assert 1_700_000_000 in literals
    assert "in" in literals
    assert {spec.view_name, spec.sink_name, "wf-1"} <= set(literals)

    identifiers = _identifiers(statement)
    assert (spec.view_name,) in identifiers
    assert ("events_source",) in identifiers
    assert ("timestamp",) in identifiers


def test_term_condition_shapes() -> None:
    eq = statements.term_condition(PredicateTerm("lead_id", Operator.EQ, "L1"))
    assert " = " in _sql_text(eq)
    assert _literals(eq) == ["lead_id", "L1"]

    in_ = statements.term_condition(PredicateTerm("type", Operator.IN, ("a", "b")))
    assert " IN (" in _sql_text(in_)
    assert _literals(in_) == ["type", "a", "b"]

    gte = statements.term_condition(PredicateTerm("timestamp", Operator.GTE, 5))
    assert "::bigint >= " in _sql_text(gte)
    assert _literals(gte) == ["timestamp", 5]


@pytest.mark.parametrize(
    "term",
    [
        PredicateTerm("type", Operator.IN, ()),
        PredicateTerm("type", Operator.IN, "tg_start"),
        PredicateTerm("timestamp", Operator.GTE, "5"),
    ],
)
def test_term_condition_rejects_malformed_terms(term: PredicateTerm) -> None:
    with pytest.raises(ValueError):
        statements.term_condition(term)


def test_where_clause_needs_terms() -> None:
    with pytest.raises(ValueError):
        statements.where_clause([])


def test_create_sink_targets_trigger_topic_as_json() -> None:
    statement = statements.create_sink(
        name="sink_a", view="view_a", broker="redpanda:29092", topic="triggers"
    )

    assert "FORMAT JSON" in _sql_text(statement)
    assert _identifiers(statement) == [("sink_a",), ("view_a",)]
    assert _literals(statement) == ["redpanda:29092", "triggers"]


def test_drop_statements_quote_names() -> None:
    assert _sql_text(statements.drop_view("view_a")) == "DROP MATERIALIZED VIEW "
    assert _identifiers(statements.drop_view("view_a")) == [("view_a",)]
    assert _sql_text(statements.drop_sink("sink_a")) == "DROP SINK "
    assert _identifiers(statements.drop_sink("sink_a")) == [("sink_a",)]


def test_fetch_one_with_timeout() -> None:
    assert _literals(statements.fetch_one("c", timeout_seconds=2.5)) == ["2.5s"]
    assert _literals(statements.fetch_one("c")) == []

"""Listener predicates over the event log.

A listener watches for a single inbound event of a given resource/lead pair
whose type is one of a set of types, at or after a lower-bound timestamp. The
lower bound keeps the continuous query scoped to recent history so a stale
listener cannot fire on old log entries.

The builder is engine-agnostic: it produces ordered `PredicateTerm`s, and the
engine layer decides how to render them.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from mz_listeners.service.listeners.naming import SINK_PREFIX, VIEW_PREFIX, new_name

INBOUND_DIRECTION = "in"


class Operator(str, Enum):
    EQ = "="
    IN = "in"
    GTE = ">="


@dataclass(frozen=True, slots=True)
class PredicateTerm:
    """One conjunct of a listener filter: `<field> <operator> <value>`."""

    field: str
    operator: Operator
    value: object

    def matches(self, record: Mapping[str, object]) -> bool:
        actual = record.get(self.field)
        if actual is None:
            return False

        if self.operator is Operator.EQ:
            return str(actual) == str(self.value)
        if self.operator is Operator.IN:
            if not isinstance(self.value, tuple):
                raise ValueError(f"IN term needs a tuple of values: {self!r}")
            return str(actual) in self.value
        if self.operator is Operator.GTE:
            if not isinstance(self.value, int):
                raise ValueError(f">= term needs an integer bound: {self!r}")
            try:
                return int(str(actual)) >= self.value
            except ValueError:
                return False
        raise ValueError(f"Unsupported operator: {self.operator}")


@dataclass(frozen=True, slots=True)
class Selectors:
    """What a caller wants a listener to watch for."""

    resource_id: uuid.UUID
    lead_id: uuid.UUID
    types: frozenset[str]
    since_timestamp: int


@dataclass(frozen=True, slots=True)
class ListenerSpec:
    view_name: str
    sink_name: str
    resource_id: uuid.UUID
    lead_id: uuid.UUID
    types: frozenset[str]
    since_timestamp: int

    @property
    def terms(self) -> tuple[PredicateTerm, ...]:
        """The filter as an ordered conjunction of terms."""

        return (
            PredicateTerm("direction", Operator.EQ, INBOUND_DIRECTION),
            PredicateTerm("resource_id", Operator.EQ, str(self.resource_id)),
            PredicateTerm("lead_id", Operator.EQ, str(self.lead_id)),
            PredicateTerm("type", Operator.IN, tuple(sorted(self.types))),
            PredicateTerm("timestamp", Operator.GTE, self.since_timestamp),
        )

    def matches(self, record: Mapping[str, object]) -> bool:
        """Evaluate the filter locally against one decoded event-log record."""

        return all(term.matches(record) for term in self.terms)


def build_spec(selectors: Selectors) -> ListenerSpec:
    types = frozenset(selectors.types)
    if not types:
        raise ValueError("A listener needs at least one event type")
    if any(not isinstance(t, str) or not t.strip() for t in types):
        raise ValueError(f"Event types must be non-empty strings: {sorted(types)!r}")

    return ListenerSpec(
        view_name=new_name(VIEW_PREFIX),
        sink_name=new_name(SINK_PREFIX),
        resource_id=selectors.resource_id,
        lead_id=selectors.lead_id,
        types=types,
        since_timestamp=int(selectors.since_timestamp),
    )


def random_selectors(
    *,
    resources: Sequence[uuid.UUID],
    leads: Sequence[uuid.UUID],
    type_sets: Sequence[frozenset[str]],
    jitter_seconds: int,
    rng: random.Random | None = None,
    now: Callable[[], float] = time.time,
) -> Selectors:
    """Draw selectors from fixed pools, with a lower bound slightly in the past.

    The jitter tolerates clock and ingest skew between this process and the
    event producers.
    """

    rng = rng or random.Random()
    skew = rng.randrange(jitter_seconds) if jitter_seconds > 0 else 0
    return Selectors(
        resource_id=rng.choice(list(resources)),
        lead_id=rng.choice(list(leads)),
        types=rng.choice(list(type_sets)),
        since_timestamp=int(now()) - skew,
    )


def generate_specs(
    *,
    resources: Sequence[uuid.UUID],
    leads: Sequence[uuid.UUID],
    type_sets: Sequence[frozenset[str]],
    jitter_seconds: int,
    rng: random.Random | None = None,
) -> Iterator[ListenerSpec]:
    """Yield fresh specs from random selectors forever."""

    rng = rng or random.Random()
    while True:
        yield build_spec(
            random_selectors(
                resources=resources,
                leads=leads,
                type_sets=type_sets,
                jitter_seconds=jitter_seconds,
                rng=rng,
            )
        )

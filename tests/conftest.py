"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from mz_listeners.service.engine.errors import EngineError, NameConflict, ObjectNotFound
from mz_listeners.service.engine.statements import TriggerProjection
from mz_listeners.service.listeners.predicate import PredicateTerm
from mz_listeners.service.listeners.triggers import TriggerMessage, encode_trigger

RESOURCE_1 = uuid.UUID("1a34b742-1ec4-11ed-861d-0242ac120002")
RESOURCE_2 = uuid.UUID("2a4aad70-1ec4-11ed-861d-0242ac120002")
LEAD_1 = uuid.UUID("1f486320-1ec4-11ed-861d-0242ac120002")
LEAD_2 = uuid.UUID("24d36d76-1ec4-11ed-861d-0242ac120002")


@dataclass
class _View:
    terms: tuple[PredicateTerm, ...]
    projection: TriggerProjection


@dataclass
class _Sink:
    view: str
    broker: str
    topic: str


@dataclass
class FakeEngine:
    """In-memory stand-in for `EngineClient`.

    Views evaluate their predicate terms against appended events; sinks
    publish matching rows, wrapped in the change envelope, to `published`.
    """

    views: dict[str, _View] = field(default_factory=dict)
    sinks: dict[str, _Sink] = field(default_factory=dict)
    published: dict[str, list[bytes]] = field(default_factory=dict)
    create_sink_errors: list[EngineError] = field(default_factory=list)
    drop_view_errors: list[EngineError] = field(default_factory=list)
    drop_sink_errors: list[EngineError] = field(default_factory=list)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _exists(self, name: str) -> bool:
        return name in self.views or name in self.sinks

    def create_view(
        self,
        *,
        name: str,
        source: str,
        terms: Sequence[PredicateTerm],
        projection: TriggerProjection,
    ) -> None:
        with self._lock:
            self.calls.append(("create_view", name))
            if self._exists(name):
                raise NameConflict(f"catalog item '{name}' already exists")
            self.views[name] = _View(terms=tuple(terms), projection=projection)

    def create_sink(self, *, name: str, view: str, broker: str, topic: str) -> None:
        with self._lock:
            self.calls.append(("create_sink", name))
            if self.create_sink_errors:
                raise self.create_sink_errors.pop(0)
            if self._exists(name):
                raise NameConflict(f"catalog item '{name}' already exists")
            if view not in self.views:
                raise ObjectNotFound(f"unknown catalog item '{view}'")
            self.sinks[name] = _Sink(view=view, broker=broker, topic=topic)

    def drop_view(self, name: str) -> None:
        with self._lock:
            self.calls.append(("drop_view", name))
            if self.drop_view_errors:
                raise self.drop_view_errors.pop(0)
            if name not in self.views:
                raise ObjectNotFound(f"unknown catalog item '{name}'")
            if any(s.view == name for s in self.sinks.values()):
                raise EngineError(f"cannot drop '{name}': still depended upon by a sink")
            del self.views[name]

    def drop_sink(self, name: str) -> None:
        with self._lock:
            self.calls.append(("drop_sink", name))
            if self.drop_sink_errors:
                raise self.drop_sink_errors.pop(0)
            if name not in self.sinks:
                raise ObjectNotFound(f"unknown catalog item '{name}'")
            del self.sinks[name]

    def append_event(self, record: Mapping[str, object]) -> None:
        """Feed one event-log record through every live listener."""

        with self._lock:
            for sink in self.sinks.values():
                view = self.views[sink.view]
                if not all(term.matches(record) for term in view.terms):
                    continue
                message = TriggerMessage(
                    view_name=view.projection.view_name,
                    sink_name=view.projection.sink_name,
                    workflow_id=view.projection.workflow_id,
                    body=str(record.get("body", "")),
                    timestamp=int(str(record["timestamp"])),
                )
                self.published.setdefault(sink.topic, []).append(encode_trigger(message))


PARTITION = "triggers-0"


@dataclass
class FakeTopic:
    """A single-partition trigger topic with one consumer group's offsets."""

    messages: list[bytes | None] = field(default_factory=list)
    position: int = 0
    committed: int = 0

    @property
    def drained(self) -> bool:
        return self.committed >= len(self.messages)


class FakeTriggerSource:
    """Stand-in for `AIOKafkaConsumer` reading from a shared `FakeTopic`.

    `on_empty` is called once every message has been committed, or after
    `max_polls` polls, so tests can stop the consumer group deterministically.
    """

    def __init__(
        self,
        topic: FakeTopic,
        *,
        on_empty: Callable[[], None] | None = None,
        read_error: Exception | None = None,
        batch_size: int = 2,
        max_polls: int | None = None,
    ) -> None:
        self._topic = topic
        self._on_empty = on_empty
        self._read_error = read_error
        self._batch_size = batch_size
        self._max_polls = max_polls
        self.polls = 0
        self.started = False
        self.stopped = False
        self.commits = 0
        self.seeks: list[int] = []

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def getmany(self, *partitions: object, timeout_ms: int = 0) -> dict[object, list[object]]:
        if self._read_error is not None:
            raise self._read_error
        await asyncio.sleep(0)

        self.polls += 1
        start = self._topic.position
        end = min(start + self._batch_size, len(self._topic.messages))
        self._topic.position = end
        records = [
            SimpleNamespace(value=self._topic.messages[offset], offset=offset)
            for offset in range(start, end)
        ]
        if self._max_polls is not None and self.polls >= self._max_polls:
            self._notify_empty()
        return {PARTITION: records} if records else {}

    async def commit(self, offsets: dict[object, int] | None = None) -> None:
        self.commits += 1
        offset = self._topic.position if offsets is None else offsets[PARTITION]
        # Several workers share the one partition here, so commits can land out of order.
        self._topic.committed = max(self._topic.committed, offset)
        if self._topic.drained:
            self._notify_empty()

    def seek(self, partition: object, offset: int) -> None:
        assert partition == PARTITION
        self.seeks.append(offset)
        self._topic.position = offset

    def _notify_empty(self) -> None:
        if self._on_empty is not None:
            self._on_empty()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()

"""Listener registration.

A listener is a materialized view filtered by the spec's predicate plus a sink
that republishes every row of that view to the trigger topic. Both objects
must exist for the listener to count as registered.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime

from mz_listeners.service.engine.client import EngineClient
from mz_listeners.service.engine.errors import EngineError
from mz_listeners.service.engine.statements import TriggerProjection
from mz_listeners.service.listeners.counter import ProgressCounter, ProgressSnapshot
from mz_listeners.service.listeners.predicate import ListenerSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegisteredListener:
    spec: ListenerSpec
    workflow_id: uuid.UUID
    created_at: datetime


class Registrar:
    """Creates the view/sink pair for a listener spec."""

    def __init__(
        self,
        *,
        engine: EngineClient,
        source: str,
        broker: str,
        topic: str,
    ) -> None:
        self._engine = engine
        self._source = source
        self._broker = broker
        self._topic = topic

    def register(self, spec: ListenerSpec) -> RegisteredListener:
        """Register one listener.

        Raises:
            EngineError: if either object could not be created. A view whose
                sink failed is dropped again before the error propagates.
        """

        workflow_id = uuid.uuid4()
        self._engine.create_view(
            name=spec.view_name,
            source=self._source,
            terms=spec.terms,
            projection=TriggerProjection(
                view_name=spec.view_name,
                sink_name=spec.sink_name,
                workflow_id=str(workflow_id),
            ),
        )

        try:
            self._engine.create_sink(
                name=spec.sink_name,
                view=spec.view_name,
                broker=self._broker,
                topic=self._topic,
            )
        except EngineError:
            self._drop_orphaned_view(spec)
            raise

        listener = RegisteredListener(
            spec=spec,
            workflow_id=workflow_id,
            created_at=datetime.now(tz=UTC),
        )
        logger.info(
            "Listener created",
            extra={
                "view_name": spec.view_name,
                "sink_name": spec.sink_name,
                "workflow_id": str(workflow_id),
            },
        )
        return listener

    def _drop_orphaned_view(self, spec: ListenerSpec) -> None:
        try:
            self._engine.drop_view(spec.view_name)
        except EngineError as e:
            # Nothing reconciles this later; the view has to be removed by hand.
            logger.error(
                "Orphaned view left behind after sink creation failed",
                extra={"view_name": spec.view_name, "sink_name": spec.sink_name, "error": str(e)},
            )
        else:
            logger.info(
                "Dropped view after sink creation failed",
                extra={"view_name": spec.view_name, "sink_name": spec.sink_name},
            )


class RegistrationPool:
    """Runs `workers` threads that register specs until the target is met.

    Specs come from a shared iterable: an unbounded generator or a bounded
    collection. Each spec is drawn exactly once. Workers stop when the
    counter's target is reached, the specs run out, or `stop` is set; a
    registration that has started always runs to completion.
    """

    def __init__(
        self,
        *,
        registrar: Registrar,
        specs: Iterable[ListenerSpec],
        workers: int,
        counter: ProgressCounter,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._registrar = registrar
        self._specs: Iterator[ListenerSpec] = iter(specs)
        self._specs_lock = threading.Lock()
        self._workers = workers
        self._counter = counter

    def _next_spec(self) -> ListenerSpec | None:
        with self._specs_lock:
            return next(self._specs, None)

    def run(self, stop: threading.Event | None = None) -> ProgressSnapshot:
        stop = stop or threading.Event()
        threads = [
            threading.Thread(
                target=self._work,
                name=f"registrar-{index}",
                args=(stop,),
                daemon=True,
            )
            for index in range(self._workers)
        ]
        for thread in threads:
            thread.start()
        try:
            for thread in threads:
                thread.join()
        except KeyboardInterrupt:
            # No new registrations start; in-flight ones are allowed to finish.
            logger.warning("Interrupted; waiting for in-flight registrations")
            stop.set()
            for thread in threads:
                thread.join()

        snapshot = self._counter.total()
        logger.info(
            "Registration pool finished",
            extra={"attempted": snapshot.attempted, "succeeded": snapshot.succeeded},
        )
        return snapshot

    def _work(self, stop: threading.Event) -> None:
        while not stop.is_set():
            if self._counter.reached:
                return

            spec = self._next_spec()
            if spec is None or not self._counter.try_begin():
                return

            try:
                self._registrar.register(spec)
            except EngineError as e:
                self._counter.abandon()
                logger.warning(
                    "Listener registration failed",
                    extra={"view_name": spec.view_name, "sink_name": spec.sink_name, "error": str(e)},
                )
                continue
            except Exception:
                self._counter.abandon()
                logger.exception(
                    "Listener registration crashed",
                    extra={"view_name": spec.view_name, "sink_name": spec.sink_name},
                )
                continue

            self._counter.increment()

"""Trigger consumer.

Runs a group of Kafka consumers that share one consumer group, so each trigger
lands on exactly one worker. Every decoded trigger tears its listener down.

Offsets are committed after a batch has been handled; a crash mid-batch means
the batch is redelivered, which teardown tolerates. A trigger whose teardown
failed is never committed: the consumer seeks back to it and reads it again
after a short pause, so the broker is the retry queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError

from mz_listeners.service.config import ListenerSettings
from mz_listeners.service.listeners.counter import ProgressCounter, ProgressSnapshot
from mz_listeners.service.listeners.teardown import TeardownCoordinator, TeardownError
from mz_listeners.service.listeners.triggers import TriggerDecodeError, decode_trigger

logger = logging.getLogger(__name__)


class TriggerSource(Protocol):
    """The subset of `AIOKafkaConsumer` the workers rely on."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def getmany(self, *partitions: Any, timeout_ms: int = 0) -> dict[Any, list[Any]]: ...

    async def commit(self, offsets: dict[Any, int] | None = None) -> None: ...

    def seek(self, partition: Any, offset: int) -> None: ...


class TriggerOutcome(str, Enum):
    TORN_DOWN = "torn_down"
    SKIPPED = "skipped"
    FAILED = "failed"


def kafka_consumer_factory(settings: ListenerSettings) -> Callable[[], TriggerSource]:
    """Build consumers for the trigger topic. Must be called inside the event loop."""

    def factory() -> TriggerSource:
        return AIOKafkaConsumer(
            settings.triggers_topic,
            bootstrap_servers=settings.kafka_bootstrap_servers,
            group_id=settings.triggers_group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )

    return factory


class TriggerConsumer:
    def __init__(
        self,
        *,
        teardown: TeardownCoordinator,
        consumer_factory: Callable[[], TriggerSource],
        workers: int,
        poll_timeout_ms: int = 1000,
        retry_backoff_ms: int = 1000,
        counter: ProgressCounter | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._teardown = teardown
        self._consumer_factory = consumer_factory
        self._workers = workers
        self._poll_timeout_ms = poll_timeout_ms
        self._retry_backoff_ms = retry_backoff_ms
        self._counter = counter or ProgressCounter()

    @property
    def counter(self) -> ProgressCounter:
        return self._counter

    async def run(self, stop: asyncio.Event | None = None) -> ProgressSnapshot:
        """Consume until every worker has stopped.

        Workers stop when `stop` is set (checked between polls, so in-flight
        teardowns finish) or when their consumer fails to read.
        """

        stop = stop or asyncio.Event()
        async with asyncio.TaskGroup() as group:
            for index in range(self._workers):
                group.create_task(self._work(index, stop), name=f"trigger-consumer-{index}")

        snapshot = self._counter.total()
        logger.info(
            "Trigger consumer finished",
            extra={"attempted": snapshot.attempted, "triggered": snapshot.succeeded},
        )
        return snapshot

    async def _work(self, index: int, stop: asyncio.Event) -> None:
        consumer = self._consumer_factory()
        try:
            try:
                await consumer.start()
            except KafkaError:
                logger.exception("Trigger consumer failed to start", extra={"worker": index})
                return

            logger.info("Trigger consumer started", extra={"worker": index})
            while not stop.is_set():
                try:
                    batches = await consumer.getmany(timeout_ms=self._poll_timeout_ms)
                except KafkaError:
                    logger.exception("Trigger read failed", extra={"worker": index})
                    return

                offsets, rewound = await self._handle_batches(consumer, batches)

                if offsets:
                    try:
                        await consumer.commit(offsets)
                    except KafkaError:
                        logger.exception("Trigger offset commit failed", extra={"worker": index})
                        return

                if rewound:
                    await self._pause(stop)
        finally:
            await consumer.stop()
            logger.info("Trigger consumer stopped", extra={"worker": index})

    async def _handle_batches(
        self, consumer: TriggerSource, batches: dict[Any, list[Any]]
    ) -> tuple[dict[Any, int], bool]:
        """Handle fetched records partition by partition.

        Returns the offsets safe to commit and whether any partition was
        rewound to a trigger whose teardown failed.
        """

        offsets: dict[Any, int] = {}
        rewound = False
        for partition, records in batches.items():
            for record in records:
                if await self.handle(record.value) is TriggerOutcome.FAILED:
                    # Later records of this partition are dropped from the batch
                    # and fetched again after the seek.
                    consumer.seek(partition, record.offset)
                    rewound = True
                    break
                offsets[partition] = record.offset + 1
        return offsets, rewound

    async def _pause(self, stop: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=self._retry_backoff_ms / 1000)
        except TimeoutError:
            pass

    async def handle(self, raw: bytes | None) -> TriggerOutcome:
        """Decode one delivered message and tear its listener down.

        A listener that was already gone counts as torn down. Undecodable
        messages are skipped; FAILED means the listener is still registered
        and the message must be delivered again.
        """

        try:
            trigger = decode_trigger(raw)
        except TriggerDecodeError as e:
            logger.warning("Skipping undecodable trigger", extra={"error": str(e)})
            return TriggerOutcome.SKIPPED

        self._counter.try_begin()
        try:
            await asyncio.to_thread(self._teardown.teardown, trigger.view_name, trigger.sink_name)
        except TeardownError as e:
            self._counter.abandon()
            logger.error(
                "Listener teardown failed; trigger will be redelivered",
                extra={
                    "view_name": trigger.view_name,
                    "sink_name": trigger.sink_name,
                    "error": str(e),
                },
            )
            return TriggerOutcome.FAILED

        self._counter.increment()
        return TriggerOutcome.TORN_DOWN

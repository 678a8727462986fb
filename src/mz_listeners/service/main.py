"""CLI entrypoint for the listener registrar and trigger consumer."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
import uuid
from collections.abc import Iterable

from pydantic import ValidationError

from mz_listeners import __version__
from mz_listeners.service.config import ListenerSettings
from mz_listeners.service.engine.client import EngineClient
from mz_listeners.service.engine.errors import EngineError
from mz_listeners.service.listeners.consumer import TriggerConsumer, kafka_consumer_factory
from mz_listeners.service.listeners.counter import ProgressCounter
from mz_listeners.service.listeners.predicate import (
    ListenerSpec,
    Selectors,
    build_spec,
    generate_specs,
)
from mz_listeners.service.listeners.registrar import Registrar, RegistrationPool
from mz_listeners.service.listeners.teardown import TeardownCoordinator, TeardownError
from mz_listeners.service.logging import configure_logging

logger = logging.getLogger(__name__)


def _parse_types(value: str | None) -> frozenset[str] | None:
    if value is None:
        return None
    parts = [p.strip() for p in value.split(",")]
    types = frozenset(p for p in parts if p)
    return types or None


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mz-listeners",
        description="Register event-log listeners on a streaming SQL engine and tear them down when they fire",
    )
    parser.add_argument("--version", action="version", version=f"mz-listeners {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser(
        "register",
        help="Register listeners with a pool of workers until the target count is created",
    )
    register.add_argument(
        "--count",
        type=_non_negative_int,
        default=None,
        help="Listeners to create (defaults to REGISTRATION_TARGET)",
    )
    register.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help="Concurrent registrar workers (defaults to REGISTRAR_WORKERS)",
    )
    register.add_argument(
        "--resource",
        type=uuid.UUID,
        default=None,
        help="Resource id to watch; with --lead and --types registers fixed listeners",
    )
    register.add_argument("--lead", type=uuid.UUID, default=None, help="Lead id to watch")
    register.add_argument(
        "--types",
        default=None,
        help="Comma-separated event types, e.g. 'tg_send_text,tg_start'",
    )
    register.add_argument(
        "--since",
        type=int,
        default=None,
        help="Lower-bound epoch timestamp (defaults to now)",
    )

    consume = subparsers.add_parser(
        "consume",
        help="Consume triggers and tear down the listeners that fired (runs until interrupted)",
    )
    consume.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        help="Consumer workers in the group (defaults to CONSUMER_WORKERS)",
    )

    teardown = subparsers.add_parser("teardown", help="Drop a listener's sink and view")
    teardown.add_argument("--view", required=True, help="View name")
    teardown.add_argument("--sink", required=True, help="Sink name")

    tail = subparsers.add_parser(
        "tail",
        help="Wait for the first row of a listener view and print it",
    )
    tail.add_argument("--view", required=True, help="View name")
    tail.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up after this many seconds (default: wait forever)",
    )

    return parser


def _open_engine(settings: ListenerSettings, *, workers: int = 1) -> EngineClient:
    """Open the engine pool with a connection for every concurrent worker.

    The pool does not block when exhausted, so fewer connections than workers
    would turn the surplus workers into failed attempts.
    """

    return EngineClient(
        dsn=settings.engine_url,
        min_connections=settings.engine_pool_min,
        max_connections=max(settings.engine_pool_max, workers),
    )


def _run_register(args: argparse.Namespace, settings: ListenerSettings) -> int:
    count = settings.registration_target if args.count is None else args.count
    workers = settings.registrar_workers if args.workers is None else args.workers

    fixed = (args.resource, args.lead, _parse_types(args.types))
    if any(v is not None for v in fixed) and not all(v is not None for v in fixed):
        print("--resource, --lead and --types must be given together", file=sys.stderr)
        return 2

    specs: Iterable[ListenerSpec]
    if all(v is not None for v in fixed):
        resource_id, lead_id, types = fixed
        assert types is not None
        selectors = Selectors(
            resource_id=resource_id,
            lead_id=lead_id,
            types=types,
            since_timestamp=args.since if args.since is not None else int(time.time()),
        )
        specs = [build_spec(selectors) for _ in range(count)]
    else:
        specs = generate_specs(
            resources=settings.listener_resources,
            leads=settings.listener_leads,
            type_sets=settings.type_sets,
            jitter_seconds=settings.since_jitter_seconds,
        )

    counter = ProgressCounter(target=count)

    with _open_engine(settings, workers=workers) as engine:
        registrar = Registrar(
            engine=engine,
            source=settings.events_source,
            broker=settings.sink_kafka_broker,
            topic=settings.triggers_topic,
        )
        pool = RegistrationPool(registrar=registrar, specs=specs, workers=workers, counter=counter)
        snapshot = pool.run()

    print(f"created={snapshot.succeeded} attempted={snapshot.attempted}")
    return 0 if snapshot.succeeded >= count else 4


def _run_consume(args: argparse.Namespace, settings: ListenerSettings) -> int:
    workers = settings.consumer_workers if args.workers is None else args.workers

    with _open_engine(settings, workers=workers) as engine:
        consumer = TriggerConsumer(
            teardown=TeardownCoordinator(engine=engine),
            consumer_factory=kafka_consumer_factory(settings),
            workers=workers,
            poll_timeout_ms=settings.consumer_poll_ms,
            retry_backoff_ms=settings.consumer_retry_backoff_ms,
        )

        async def _consume() -> None:
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(signum, stop.set)
                except NotImplementedError:
                    pass
            await consumer.run(stop=stop)

        try:
            asyncio.run(_consume())
        finally:
            triggered = consumer.counter.total().succeeded
            logger.info("Total triggered", extra={"triggered": triggered})
            print(f"triggered={triggered}")
    return 0


def _run_teardown(args: argparse.Namespace, settings: ListenerSettings) -> int:
    with _open_engine(settings) as engine:
        coordinator = TeardownCoordinator(engine=engine)
        try:
            result = coordinator.teardown(args.view, args.sink)
        except TeardownError as e:
            logger.error(str(e), extra={"view_name": args.view, "sink_name": args.sink})
            print(str(e), file=sys.stderr)
            return 4

    if result.sink_dropped or result.view_dropped:
        print(f"Listener [{args.view} {args.sink}] deleted")
    else:
        print(f"Listener [{args.view} {args.sink}] was already deleted")
    return 0


def _run_tail(args: argparse.Namespace, settings: ListenerSettings) -> int:
    with _open_engine(settings) as engine:
        message = engine.subscribe_first(args.view, timeout_seconds=args.timeout)

    if message is None:
        print(f"No row from {args.view} within {args.timeout}s")
        return 5
    print(message.model_dump_json())
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ListenerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        if args.command == "register":
            return _run_register(args, settings)
        if args.command == "consume":
            return _run_consume(args, settings)
        if args.command == "teardown":
            return _run_teardown(args, settings)
        if args.command == "tail":
            return _run_tail(args, settings)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except EngineError as e:
        logger.error("Engine error", extra={"error": str(e), "pgcode": e.pgcode})
        print(f"Engine error: {e}", file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

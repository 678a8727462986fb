#!/usr/bin/env python3
"""Programmatic listener example.

This demonstrates using the listener components directly:

* load settings from `.env`
* register one listener for a resource/lead pair
* wait for it to fire (the first row of its view)
* tear it down

Selectors are passed as arguments (not read from `.env`).
"""

from __future__ import annotations

import argparse
import time
import uuid
from typing import Sequence

from mz_listeners.service.config import ListenerSettings
from mz_listeners.service.engine.client import EngineClient
from mz_listeners.service.listeners.predicate import Selectors, build_spec
from mz_listeners.service.listeners.registrar import Registrar
from mz_listeners.service.listeners.teardown import TeardownCoordinator
from mz_listeners.service.logging import configure_logging


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register one listener (programmatic example).")
    parser.add_argument("--resource", required=True, type=uuid.UUID, help="Resource id")
    parser.add_argument("--lead", required=True, type=uuid.UUID, help="Lead id")
    parser.add_argument(
        "--types",
        default="tg_start",
        help='Comma-separated event types, e.g. "tg_send_text,tg_start"',
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for a match")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    types = frozenset(t.strip() for t in args.types.split(",") if t.strip())

    settings = ListenerSettings()
    configure_logging(settings.log_level)

    spec = build_spec(
        Selectors(
            resource_id=args.resource,
            lead_id=args.lead,
            types=types,
            since_timestamp=int(time.time()),
        )
    )

    with EngineClient(dsn=settings.engine_url, max_connections=2) as engine:
        listener = Registrar(
            engine=engine,
            source=settings.events_source,
            broker=settings.sink_kafka_broker,
            topic=settings.triggers_topic,
        ).register(spec)
        print(f"Registered {spec.view_name} / {spec.sink_name} (workflow {listener.workflow_id})")

        try:
            message = engine.subscribe_first(spec.view_name, timeout_seconds=args.timeout)
        finally:
            TeardownCoordinator(engine=engine).teardown(spec.view_name, spec.sink_name)

    if message is None:
        print(f"No matching event within {args.timeout}s; listener removed")
        return 0

    print(f"Fired at {message.timestamp}: {message.body}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

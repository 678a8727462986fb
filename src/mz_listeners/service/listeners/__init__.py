"""Listener lifecycle.

This package holds the protocol itself:
- naming and predicate construction for listener specs
- registration of view/sink pairs with a bounded worker pool
- decoding of trigger messages and idempotent teardown
"""

from mz_listeners.service.listeners.counter import ProgressCounter, ProgressSnapshot
from mz_listeners.service.listeners.predicate import ListenerSpec, Selectors, build_spec

__all__ = [
    "ListenerSpec",
    "ProgressCounter",
    "ProgressSnapshot",
    "Selectors",
    "build_spec",
]

"""Listener teardown.

Triggers are delivered at least once, so the same listener can be torn down
more than once. An object that is already gone counts as torn down.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from mz_listeners.service.engine.client import EngineClient
from mz_listeners.service.engine.errors import EngineError, ObjectNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TeardownResult:
    """What a teardown call removed. False means the object was already absent."""

    view_name: str
    sink_name: str
    sink_dropped: bool
    view_dropped: bool


@dataclass(eq=False)
class TeardownError(Exception):
    """Raised when the engine refused to drop a listener's view or sink."""

    view_name: str
    sink_name: str
    errors: tuple[EngineError, ...]

    def __str__(self) -> str:
        reasons = "; ".join(str(e) for e in self.errors)
        return f"Listener [{self.view_name} {self.sink_name}] teardown failed: {reasons}"


class TeardownCoordinator:
    def __init__(self, *, engine: EngineClient) -> None:
        self._engine = engine

    def teardown(self, view_name: str, sink_name: str) -> TeardownResult:
        """Drop a listener's sink and view.

        The sink goes first because the engine will not drop a view that a
        live sink still reads from. Both drops are always attempted.

        Raises:
            TeardownError: if either drop failed for a reason other than the
                object being absent. The listener is left in place; the next
                redelivery of its trigger retries.
        """

        errors: list[EngineError] = []

        sink_dropped = self._drop(self._engine.drop_sink, sink_name, errors)
        view_dropped = self._drop(self._engine.drop_view, view_name, errors)

        if errors:
            raise TeardownError(view_name=view_name, sink_name=sink_name, errors=tuple(errors))

        result = TeardownResult(
            view_name=view_name,
            sink_name=sink_name,
            sink_dropped=sink_dropped,
            view_dropped=view_dropped,
        )
        if sink_dropped or view_dropped:
            logger.info(
                "Listener deleted", extra={"view_name": view_name, "sink_name": sink_name}
            )
        else:
            logger.info(
                "Listener already deleted", extra={"view_name": view_name, "sink_name": sink_name}
            )
        return result

    @staticmethod
    def _drop(drop: Callable[[str], None], name: str, errors: list[EngineError]) -> bool:
        try:
            drop(name)
        except ObjectNotFound:
            return False
        except EngineError as e:
            errors.append(e)
            return False
        return True

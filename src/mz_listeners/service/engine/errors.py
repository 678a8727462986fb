"""Engine failures, classified from psycopg2 errors."""

from __future__ import annotations

import psycopg2

# SQLSTATE codes; Materialize reuses the PostgreSQL ones.
UNDEFINED_TABLE = "42P01"
UNDEFINED_OBJECT = "42704"
DUPLICATE_TABLE = "42P07"
DUPLICATE_OBJECT = "42710"

_NOT_FOUND_CODES = {UNDEFINED_TABLE, UNDEFINED_OBJECT}
_CONFLICT_CODES = {DUPLICATE_TABLE, DUPLICATE_OBJECT}


class EngineError(Exception):
    """A statement was rejected by the engine or could not be delivered."""

    def __init__(self, message: str, *, pgcode: str | None = None) -> None:
        super().__init__(message)
        self.pgcode = pgcode


class ObjectNotFound(EngineError):
    """The named view or sink does not exist."""


class NameConflict(EngineError):
    """An object with the requested name already exists."""


class EngineUnavailable(EngineError):
    """The connection to the engine failed or was lost."""


def classify(exc: psycopg2.Error) -> EngineError:
    """Map a driver error onto the engine taxonomy."""

    message = (getattr(exc, "pgerror", None) or str(exc)).strip()
    pgcode = getattr(exc, "pgcode", None)
    lowered = message.lower()

    if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)) and pgcode is None:
        return EngineUnavailable(message, pgcode=pgcode)
    if pgcode in _NOT_FOUND_CODES or "unknown catalog item" in lowered:
        return ObjectNotFound(message, pgcode=pgcode)
    if pgcode in _CONFLICT_CODES or "already exists" in lowered:
        return NameConflict(message, pgcode=pgcode)
    return EngineError(message, pgcode=pgcode)

"""Names for ephemeral engine objects.

Every view and sink gets its own random 128-bit suffix, hex encoded so the
result stays inside the unquoted identifier grammar of the engine.
"""

from __future__ import annotations

import re
import uuid

VIEW_PREFIX = "view_"
SINK_PREFIX = "sink_"

# PostgreSQL (and Materialize) truncate identifiers beyond 63 bytes.
MAX_IDENTIFIER_LENGTH = 63

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def is_valid_identifier(name: str) -> bool:
    """Return True if `name` is a legal unquoted object identifier."""

    return len(name) <= MAX_IDENTIFIER_LENGTH and bool(_IDENTIFIER_RE.match(name))


def new_name(prefix: str) -> str:
    if not _IDENTIFIER_RE.match(prefix):
        raise ValueError(f"Invalid identifier prefix: {prefix!r}")

    name = prefix + uuid.uuid4().hex
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"Identifier prefix is too long: {prefix!r}")
    return name

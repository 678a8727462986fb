"""Trigger messages published by listener sinks.

A sink emits one JSON message per row appended to its view, wrapped in the
engine's change envelope: `{"after": {"row": {...}}}`. Only inserts carry an
after-image; anything else is not a trigger.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class TriggerMessage(BaseModel):
    """The row a listener view projects for a matched event."""

    model_config = ConfigDict(frozen=True)

    view_name: str = Field(min_length=1)
    sink_name: str = Field(min_length=1)
    workflow_id: str = Field(default="")
    body: str | None = None
    timestamp: int


class _AfterImage(BaseModel):
    row: TriggerMessage


class SinkEnvelope(BaseModel):
    after: _AfterImage | None = None


class TriggerDecodeError(ValueError):
    """A delivered message is not a well-formed trigger."""


def decode_trigger(raw: bytes | str | None) -> TriggerMessage:
    if raw is None:
        raise TriggerDecodeError("Empty message")

    try:
        envelope = SinkEnvelope.model_validate_json(raw)
    except ValidationError as e:
        raise TriggerDecodeError(f"Malformed trigger envelope: {e}") from e

    if envelope.after is None:
        raise TriggerDecodeError("Envelope has no after-image (not an insert)")
    return envelope.after.row


def encode_trigger(message: TriggerMessage) -> bytes:
    """Wrap a trigger in the sink envelope, as the engine would publish it."""

    return SinkEnvelope(after=_AfterImage(row=message)).model_dump_json().encode("utf-8")

"""Configuration for the listener registrar and trigger consumer.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

List-valued settings (selector pools) are given as JSON, e.g.
`LISTENER_TYPE_SETS='[["tg_start"], ["tg_send_text", "tg_start"]]'`.
"""

from __future__ import annotations

import uuid

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RESOURCES = [
    uuid.UUID("1a34b742-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("2a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("3a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("4a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("5a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("6a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("7a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("8a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("9a4aad70-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("0a4aad70-1ec4-11ed-861d-0242ac120002"),
]

DEFAULT_LEADS = [
    uuid.UUID("1f486320-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("24d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("34d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("44d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("54d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("64d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("74d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("84d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("94d36d76-1ec4-11ed-861d-0242ac120002"),
    uuid.UUID("04d36d76-1ec4-11ed-861d-0242ac120002"),
]

DEFAULT_TYPE_SETS = [
    ["tg_send_text"],
    ["tg_send_text", "tg_start"],
    ["tg_start"],
]


class ListenerSettings(BaseSettings):
    """Settings for the listener services.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `ListenerSettings(_env_file=path_to_env)`.
    """

    engine_url: str = Field(
        default="postgres://materialize@localhost:6875/materialize?sslmode=disable",
        validation_alias="ENGINE_URL",
        description="libpq connection string of the streaming SQL engine",
    )
    engine_pool_min: int = Field(
        default=1,
        ge=1,
        validation_alias="ENGINE_POOL_MIN",
        description="Connections opened eagerly in the engine pool",
    )
    engine_pool_max: int = Field(
        default=16,
        ge=1,
        validation_alias="ENGINE_POOL_MAX",
        description="Upper bound of the engine pool; size it to the worker count",
    )
    events_source: str = Field(
        default="events_source",
        validation_alias="EVENTS_SOURCE",
        description="Engine source holding the JSON event log",
    )

    sink_kafka_broker: str = Field(
        default="redpanda:29092",
        validation_alias="SINK_KAFKA_BROKER",
        description="Kafka broker address as seen from the engine (used in CREATE SINK)",
    )
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        validation_alias="KAFKA_BOOTSTRAP_SERVERS",
        description="Kafka bootstrap servers as seen from the trigger consumer",
    )
    triggers_topic: str = Field(
        default="triggers",
        validation_alias="TRIGGERS_TOPIC",
        description="Topic listener sinks publish triggers to",
    )
    triggers_group_id: str = Field(
        default="triggers_consumer",
        validation_alias="TRIGGERS_GROUP_ID",
        description="Consumer group shared by all trigger consumer workers",
    )

    registrar_workers: int = Field(
        default=16,
        ge=1,
        validation_alias="REGISTRAR_WORKERS",
        description="Threads registering listeners concurrently",
    )
    registration_target: int = Field(
        default=10000,
        ge=0,
        validation_alias="REGISTRATION_TARGET",
        description="Successful registrations after which the registrar stops",
    )
    consumer_workers: int = Field(
        default=2,
        ge=1,
        validation_alias="CONSUMER_WORKERS",
        description="Trigger consumer workers in the consumer group",
    )
    consumer_poll_ms: int = Field(
        default=1000,
        ge=1,
        validation_alias="CONSUMER_POLL_MS",
        description="How long a consumer poll blocks; bounds shutdown latency",
    )
    consumer_retry_backoff_ms: int = Field(
        default=1000,
        ge=0,
        validation_alias="CONSUMER_RETRY_BACKOFF_MS",
        description="Pause before re-reading a trigger whose teardown failed",
    )
    since_jitter_seconds: int = Field(
        default=10,
        ge=0,
        validation_alias="SINCE_JITTER_SECONDS",
        description="Maximum look-back of a random listener's lower-bound timestamp",
    )

    listener_resources: list[uuid.UUID] = Field(
        default_factory=lambda: list(DEFAULT_RESOURCES),
        validation_alias="LISTENER_RESOURCES",
        description="Resource ids random listeners are drawn from",
    )
    listener_leads: list[uuid.UUID] = Field(
        default_factory=lambda: list(DEFAULT_LEADS),
        validation_alias="LISTENER_LEADS",
        description="Lead ids random listeners are drawn from",
    )
    listener_type_sets: list[list[str]] = Field(
        default_factory=lambda: [list(s) for s in DEFAULT_TYPE_SETS],
        validation_alias="LISTENER_TYPE_SETS",
        description="Event-type sets random listeners are drawn from",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> ListenerSettings:
        if self.engine_pool_min > self.engine_pool_max:
            raise ValueError("ENGINE_POOL_MIN must not exceed ENGINE_POOL_MAX")
        if not self.listener_resources:
            raise ValueError("LISTENER_RESOURCES must not be empty")
        if not self.listener_leads:
            raise ValueError("LISTENER_LEADS must not be empty")
        if not self.listener_type_sets or any(
            not [t for t in s if t.strip()] for s in self.listener_type_sets
        ):
            raise ValueError("LISTENER_TYPE_SETS must be non-empty sets of event types")
        return self

    @property
    def type_sets(self) -> list[frozenset[str]]:
        """Selector type sets as immutable sets."""

        return [frozenset(t.strip() for t in s if t.strip()) for s in self.listener_type_sets]

"""Event recording and the duplicate-store backends.

Recorded deliveries double as the idempotency record: once a delivery
with an idempotency key is recorded, ``exists(provider, key)`` reports it
as already processed.

Backends:
- InMemoryEventStore: thread-safe, single process and tests
- RedisEventStore: ``SET NX EX`` under ``webhook:seen:{provider}:{key}``
  with a 24h TTL by default
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import redis

from hookrelay.errors import PersistenceError

if TYPE_CHECKING:
    from hookrelay.instrumentation import Instrumentation

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_TTL_SECONDS = 86400  # 24 hours
DEFAULT_KEY_PREFIX = "webhook:seen"


class RecordTiming(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    BOTH = "both"


# Mapper signature: (provider, event, payload, idempotency_key) -> entry dict
EntryMapper = Callable[[str, str, Any, str | None], dict[str, Any]]


def default_mapper(
    provider: str, event: str, payload: Any, idempotency_key: str | None
) -> dict[str, Any]:
    return {
        "provider": provider,
        "event": event,
        "payload": payload,
        "idempotency_key": idempotency_key,
        "received_at": time.time(),
    }


@runtime_checkable
class EventStore(Protocol):
    """Persistence and duplicate-lookup capability.

    Implementations raise ``PersistenceError`` when the backend fails.
    """

    def record(self, entry: dict[str, Any]) -> None: ...

    def exists(self, provider: str, key: str) -> bool: ...


class InMemoryEventStore:
    """Thread-safe in-memory event store.

    Entries are kept for the life of the process and never expire, so this
    backend is meant for tests and single-process development only. Use
    ``RedisEventStore`` in production.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entries: list[dict[str, Any]] = []
        self._seen: set[tuple[str, str]] = set()

    def record(self, entry: dict[str, Any]) -> None:
        with self._lock:
            self.entries.append(entry)
            key = entry.get("idempotency_key")
            if key is not None:
                self._seen.add((str(entry.get("provider")), str(key)))

    def exists(self, provider: str, key: str) -> bool:
        with self._lock:
            return (str(provider), str(key)) in self._seen

    def mark_seen(self, provider: str, key: str) -> None:
        with self._lock:
            self._seen.add((str(provider), str(key)))


class RedisEventStore:
    """Redis-backed event store.

    Only deliveries that carry an idempotency key are written; the value
    is the JSON-encoded entry without its payload.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        *,
        client: redis.Redis | None = None,
        ttl: int = DEFAULT_DEDUP_TTL_SECONDS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self._url = redis_url
        self._client = client
        self.ttl = ttl
        self.key_prefix = key_prefix

    def _get_redis(self) -> redis.Redis:
        if self._client is None:
            if not self._url:
                raise PersistenceError("RedisEventStore has no redis_url or client")
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    def key_for(self, provider: str, key: str) -> str:
        return f"{self.key_prefix}:{provider}:{key}"

    def record(self, entry: dict[str, Any]) -> None:
        key = entry.get("idempotency_key")
        if key is None:
            return
        provider = str(entry.get("provider"))
        meta = {k: v for k, v in entry.items() if k != "payload"}
        try:
            self._get_redis().set(
                self.key_for(provider, str(key)),
                json.dumps(meta, default=str),
                nx=True,
                ex=self.ttl,
            )
        except redis.RedisError as exc:
            raise PersistenceError(
                "Failed to record webhook event",
                provider=provider,
                event=entry.get("event"),
                original_error=exc,
            ) from exc

    def exists(self, provider: str, key: str) -> bool:
        try:
            return bool(self._get_redis().exists(self.key_for(str(provider), str(key))))
        except redis.RedisError as exc:
            raise PersistenceError(
                "Failed to look up webhook event", provider=provider, original_error=exc
            ) from exc


@dataclass
class EventStoreConfig:
    """Event persistence settings. Disabled unless ``enabled`` and ``store`` are set."""

    enabled: bool = False
    store: EventStore | None = None
    record_timing: RecordTiming = RecordTiming.AFTER
    mapper: EntryMapper = field(default=default_mapper)

    def __post_init__(self) -> None:
        self.record_timing = RecordTiming(self.record_timing)

    @property
    def active(self) -> bool:
        return self.enabled and self.store is not None

    def records_at(self, timing: RecordTiming | str) -> bool:
        timing = RecordTiming(timing)
        return self.record_timing in (timing, RecordTiming.BOTH)


class EventRecorder:
    """Writes before/after records for a dispatch. Never raises into dispatch.

    Any failure in the mapper or the store is logged and dropped.
    """

    def __init__(self, config: EventStoreConfig, instrumentation: Instrumentation) -> None:
        self.config = config
        self.instrumentation = instrumentation

    def record(
        self,
        *,
        provider: str,
        event: str,
        payload: Any,
        timing: RecordTiming | str,
        idempotency_key: str | None = None,
    ) -> None:
        timing = RecordTiming(timing)
        self.instrumentation.publish(
            "record", {"provider": provider, "event": event, "timing": timing.value}
        )
        if not self.config.active or not self.config.records_at(timing):
            return
        try:
            entry = self.config.mapper(provider, event, payload, idempotency_key)
            self.config.store.record(entry)
        except Exception:
            logger.error(
                "Failed to record %s webhook event: %s/%s",
                timing.value, provider, event,
                exc_info=True,
            )

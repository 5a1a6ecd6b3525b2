"""Lifecycle event fan-out for webhook processing.

Provides:
- Instrumentation: publish/subscribe sink for ``<event>.hookrelay`` events
- instrument(): context manager that times a block and publishes on exit

Events:
    dispatch.hookrelay             {provider, event, duration_ms}
    process.hookrelay              {provider, event, processor, duration_ms}
    no_processor.hookrelay         {provider, event}
    multiple_processors.hookrelay  {provider, event, processor_count}
    error.hookrelay                {provider, event, error, error_class}
    record.hookrelay               {provider, event, timing}
    verification_failed.hookrelay  {provider, reason}
    duplicate.hookrelay            {provider, event, key}

Publishing is fire-and-forget: a failing subscriber is logged and never
raises into the caller.
"""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "hookrelay"

# Subscriber signature: (full_event_name, attributes) -> None
Subscriber = Callable[[str, dict[str, Any]], None]


def full_name(event_name: str) -> str:
    return f"{event_name}.{NAMESPACE}"


class Instrumentation:
    """Fans out lifecycle events to registered subscribers."""

    def __init__(self) -> None:
        self._subscribers: dict[str, tuple[re.Pattern[str], Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        callback: Subscriber,
        event_name: str | re.Pattern[str] | None = None,
    ) -> str:
        """Register *callback*. Returns a subscription id for ``unsubscribe``.

        ``event_name`` may be ``None`` (all hookrelay events), a bare event
        name such as ``"dispatch"``, or a compiled regex matched against the
        full namespaced name.
        """
        if event_name is None:
            pattern = re.compile(rf"\.{NAMESPACE}$")
        elif isinstance(event_name, re.Pattern):
            pattern = event_name
        else:
            pattern = re.compile(rf"^{re.escape(full_name(event_name))}$")

        sub_id = uuid.uuid4().hex[:8]
        with self._lock:
            self._subscribers[sub_id] = (pattern, callback)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        with self._lock:
            self._subscribers.pop(sub_id, None)

    def publish(self, event_name: str, attributes: dict[str, Any] | None = None) -> None:
        """Deliver an event to every matching subscriber (non-raising)."""
        name = full_name(event_name)
        attrs = dict(attributes or {})
        with self._lock:
            subscribers = list(self._subscribers.items())
        for sub_id, (pattern, callback) in subscribers:
            if not pattern.search(name):
                continue
            try:
                callback(name, attrs)
            except Exception:
                logger.warning(
                    "Instrumentation subscriber %s failed on %s", sub_id, name,
                    exc_info=True,
                )

    @contextmanager
    def instrument(
        self, event_name: str, attributes: dict[str, Any] | None = None
    ) -> Iterator[dict[str, Any]]:
        """Time the enclosed block and publish *event_name* when it exits.

        The yielded dict is published, so the block may add attributes
        (e.g. a result summary). Exceptions are annotated and re-raised.
        """
        attrs = dict(attributes or {})
        start = time.perf_counter()
        try:
            yield attrs
        except BaseException as exc:
            attrs["error"] = str(exc)
            attrs["error_class"] = type(exc).__name__
            raise
        finally:
            attrs["duration_ms"] = (time.perf_counter() - start) * 1000
            self.publish(event_name, attrs)


class EventCollector:
    """Subscriber that keeps every event it sees, for tests and debugging."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, name: str, attributes: dict[str, Any]) -> None:
        self.events.append((name, attributes))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def attributes_for(self, event_name: str) -> list[dict[str, Any]]:
        target = full_name(event_name)
        return [attrs for name, attrs in self.events if name == target]

"""Shared fixtures for the hookrelay test suite."""

from __future__ import annotations

import pytest

from hookrelay.config import Configuration
from hookrelay.instrumentation import EventCollector
from hookrelay.store import EventStoreConfig, InMemoryEventStore


@pytest.fixture()
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture()
def config(collector: EventCollector) -> Configuration:
    """Fresh, unfrozen configuration with an event collector subscribed."""
    cfg = Configuration()
    cfg.instrumentation.subscribe(collector)
    return cfg


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture()
def store_config(config: Configuration, event_store: InMemoryEventStore) -> Configuration:
    """Configuration with in-memory recording enabled (records after processing)."""
    config.event_store = EventStoreConfig(enabled=True, store=event_store)
    return config

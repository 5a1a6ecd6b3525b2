"""Tests for event stores and the dispatch event recorder."""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import redis
from freezegun import freeze_time

from hookrelay.errors import PersistenceError
from hookrelay.instrumentation import Instrumentation
from hookrelay.store import (
    DEFAULT_DEDUP_TTL_SECONDS,
    EventRecorder,
    EventStore,
    EventStoreConfig,
    InMemoryEventStore,
    RecordTiming,
    RedisEventStore,
    default_mapper,
)


def _entry(key="evt_1", provider="stripe"):
    return {
        "provider": provider,
        "event": "charge.succeeded",
        "payload": {"card": "4111111111111111"},
        "idempotency_key": key,
        "received_at": 1767268800.0,
    }


class TestInMemoryEventStore:
    def test_satisfies_protocol(self):
        assert isinstance(InMemoryEventStore(), EventStore)

    def test_record_marks_key_seen(self):
        store = InMemoryEventStore()
        store.record(_entry())
        assert store.exists("stripe", "evt_1")
        assert store.entries == [_entry()]

    def test_entry_without_key_kept_but_not_seen(self):
        store = InMemoryEventStore()
        store.record(_entry(key=None))
        assert len(store.entries) == 1
        assert not store.exists("stripe", "None")

    def test_mark_seen(self):
        store = InMemoryEventStore()
        store.mark_seen("github", "d-1")
        assert store.exists("github", "d-1")
        assert not store.exists("stripe", "d-1")


class TestRedisEventStore:
    def _store(self, client=None, **kwargs):
        return RedisEventStore(client=client or MagicMock(), **kwargs)

    def test_satisfies_protocol(self):
        assert isinstance(self._store(), EventStore)

    def test_record_uses_set_nx_with_ttl(self):
        client = MagicMock()
        self._store(client).record(_entry())

        client.set.assert_called_once()
        args, kwargs = client.set.call_args
        assert args[0] == "webhook:seen:stripe:evt_1"
        assert kwargs == {"nx": True, "ex": DEFAULT_DEDUP_TTL_SECONDS}

    def test_record_omits_payload(self):
        client = MagicMock()
        self._store(client).record(_entry())

        stored = json.loads(client.set.call_args.args[1])
        assert "payload" not in stored
        assert stored["event"] == "charge.succeeded"
        assert "4111111111111111" not in client.set.call_args.args[1]

    def test_record_without_key_is_skipped(self):
        client = MagicMock()
        self._store(client).record(_entry(key=None))
        client.set.assert_not_called()

    def test_custom_prefix_and_ttl(self):
        client = MagicMock()
        store = self._store(client, ttl=60, key_prefix="hooks:dedup")
        store.record(_entry())
        assert client.set.call_args.args[0] == "hooks:dedup:stripe:evt_1"
        assert client.set.call_args.kwargs["ex"] == 60

    @pytest.mark.parametrize(("reply", "expected"), [(1, True), (0, False)])
    def test_exists(self, reply, expected):
        client = MagicMock()
        client.exists.return_value = reply
        assert self._store(client).exists("stripe", "evt_1") is expected
        client.exists.assert_called_once_with("webhook:seen:stripe:evt_1")

    def test_record_error_wrapped(self):
        client = MagicMock()
        client.set.side_effect = redis.ConnectionError("refused")

        with pytest.raises(PersistenceError) as exc_info:
            self._store(client).record(_entry())
        assert exc_info.value.provider == "stripe"
        assert isinstance(exc_info.value.original_error, redis.ConnectionError)

    def test_exists_error_wrapped(self):
        client = MagicMock()
        client.exists.side_effect = redis.TimeoutError("slow")
        with pytest.raises(PersistenceError):
            self._store(client).exists("stripe", "evt_1")

    def test_no_url_or_client(self):
        with pytest.raises(PersistenceError, match="no redis_url or client"):
            RedisEventStore().exists("stripe", "evt_1")

    @patch("hookrelay.store.redis.from_url")
    def test_lazy_client_from_url(self, mock_from_url):
        mock_from_url.return_value.exists.return_value = 0
        store = RedisEventStore("redis://localhost:6381/0")
        mock_from_url.assert_not_called()

        store.exists("stripe", "evt_1")
        store.exists("stripe", "evt_2")
        mock_from_url.assert_called_once_with("redis://localhost:6381/0", decode_responses=True)


class TestEventStoreConfig:
    def test_inactive_by_default(self):
        assert not EventStoreConfig().active

    def test_active_needs_store(self):
        assert not EventStoreConfig(enabled=True).active
        assert EventStoreConfig(enabled=True, store=InMemoryEventStore()).active

    def test_timing_coerced(self):
        assert EventStoreConfig(record_timing="both").record_timing is RecordTiming.BOTH

    @pytest.mark.parametrize(
        ("configured", "timing", "expected"),
        [
            ("after", "after", True),
            ("after", "before", False),
            ("before", "before", True),
            ("both", "before", True),
            ("both", "after", True),
        ],
    )
    def test_records_at(self, configured, timing, expected):
        assert EventStoreConfig(record_timing=configured).records_at(timing) is expected


class TestEventRecorder:
    def _recorder(self, timing="after", store=None):
        store = store if store is not None else InMemoryEventStore()
        config = EventStoreConfig(enabled=True, store=store, record_timing=timing)
        return EventRecorder(config, Instrumentation()), store

    def test_records_matching_timing(self):
        recorder, store = self._recorder("after")
        recorder.record(provider="stripe", event="e", payload={}, timing="before")
        recorder.record(provider="stripe", event="e", payload={}, timing="after", idempotency_key="k")
        assert len(store.entries) == 1
        assert store.exists("stripe", "k")

    def test_both_records_twice(self):
        recorder, store = self._recorder("both")
        for timing in ("before", "after"):
            recorder.record(provider="stripe", event="e", payload={}, timing=timing)
        assert len(store.entries) == 2

    def test_inactive_store_still_publishes(self):
        instrumentation = MagicMock()
        recorder = EventRecorder(EventStoreConfig(), instrumentation)
        recorder.record(provider="stripe", event="e", payload={}, timing=RecordTiming.BEFORE)
        instrumentation.publish.assert_called_once_with(
            "record", {"provider": "stripe", "event": "e", "timing": "before"}
        )

    def test_custom_mapper(self):
        store = InMemoryEventStore()
        config = EventStoreConfig(
            enabled=True,
            store=store,
            mapper=lambda provider, event, payload, key: {"provider": provider, "idempotency_key": key},
        )
        EventRecorder(config, Instrumentation()).record(
            provider="stripe", event="e", payload={"secret": 1}, timing="after", idempotency_key="k"
        )
        assert store.entries == [{"provider": "stripe", "idempotency_key": "k"}]

    def test_persistence_error_swallowed(self, caplog):
        store = MagicMock()
        store.record.side_effect = PersistenceError("redis down")
        recorder, _ = self._recorder("after", store)

        with caplog.at_level(logging.ERROR, logger="hookrelay.store"):
            recorder.record(provider="stripe", event="e", payload={}, timing="after")
        assert "Failed to record after webhook event" in caplog.text

    def test_raising_mapper_swallowed(self, caplog):
        def broken_mapper(provider, event, payload, key):
            raise TypeError("mapper bug")

        store = InMemoryEventStore()
        config = EventStoreConfig(enabled=True, store=store, mapper=broken_mapper)
        recorder = EventRecorder(config, Instrumentation())

        with caplog.at_level(logging.ERROR, logger="hookrelay.store"):
            recorder.record(provider="stripe", event="e", payload={}, timing="after")
        assert store.entries == []
        assert "Failed to record after webhook event" in caplog.text

    def test_unexpected_store_error_swallowed(self):
        class FlakyStore:
            def record(self, entry):
                raise OSError("disk full")

            def exists(self, provider, key):
                return False

        recorder, _ = self._recorder("both", FlakyStore())
        recorder.record(provider="stripe", event="e", payload={}, timing="before")
        recorder.record(provider="stripe", event="e", payload={}, timing="after")


@freeze_time("2026-01-01 12:00:00")
def test_default_mapper_stamps_received_at():
    entry = default_mapper("stripe", "charge.succeeded", {"id": 1}, "evt_1")
    assert entry == {
        "provider": "stripe",
        "event": "charge.succeeded",
        "payload": {"id": 1},
        "idempotency_key": "evt_1",
        "received_at": 1767268800.0,
    }

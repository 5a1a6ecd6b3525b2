"""Webhook routing configuration.

A single ``Configuration`` is built during application startup, frozen,
and then passed to every dispatcher, verifier call and job. There is no
process-wide configuration object.

Usage::

    config = Configuration()
    config.processor_factory("ChargeSucceeded", ChargeSucceeded)

    with config.provider("stripe") as stripe:
        stripe.verifier = HmacVerifier(secret=settings.secret_for("stripe"), header="X-Signature")
        stripe.idempotency_key = Extractors.STRIPE
        stripe.register("charge.succeeded", "ChargeSucceeded")

    config.freeze()
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from hookrelay.errors import ConfigurationError
from hookrelay.instrumentation import Instrumentation
from hookrelay.processor import ProcessorFactory, handler_name_for
from hookrelay.registry import ProcessorBinding, Registry
from hookrelay.request import WebhookRequest
from hookrelay.store import (
    DEFAULT_DEDUP_TTL_SECONDS,
    DEFAULT_KEY_PREFIX,
    EventStoreConfig,
    RedisEventStore,
)
from hookrelay.verification import DEFAULT_TIMESTAMP_TOLERANCE, TimestampOptions, Verifier

logger = logging.getLogger(__name__)

# payload -> idempotency key (or None)
KeyExtractor = Callable[[Any], Any]
# (payload, request) -> event name (or None)
EventKey = Callable[[Any, WebhookRequest], str | None]


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settings:
    """Deployment settings read from the environment."""

    redis_url: str = "redis://localhost:6381/0"
    dedup_ttl: int = DEFAULT_DEDUP_TTL_SECONDS
    key_prefix: str = DEFAULT_KEY_PREFIX
    timestamp_tolerance: int = DEFAULT_TIMESTAMP_TOLERANCE

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        try:
            return cls(
                redis_url=env.get("REDIS_URL", cls.redis_url),
                dedup_ttl=int(env.get("HOOKRELAY_DEDUP_TTL", cls.dedup_ttl)),
                key_prefix=env.get("HOOKRELAY_KEY_PREFIX", cls.key_prefix),
                timestamp_tolerance=int(
                    env.get("HOOKRELAY_TIMESTAMP_TOLERANCE", cls.timestamp_tolerance)
                ),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid hookrelay environment setting: {exc}") from exc

    @staticmethod
    def secret_for(provider: str, environ: dict[str, str] | None = None) -> str:
        """``<PROVIDER>_WEBHOOK_SECRET`` from the environment, or ``""``."""
        env = os.environ if environ is None else environ
        return env.get(f"{provider.upper()}_WEBHOOK_SECRET", "")

    def redis_event_store(self) -> RedisEventStore:
        return RedisEventStore(self.redis_url, ttl=self.dedup_ttl, key_prefix=self.key_prefix)

    def timestamp_options(self, header: str, fmt: str = "unix") -> TimestampOptions:
        """Freshness-check options using the configured tolerance."""
        return TimestampOptions(header=header, tolerance=self.timestamp_tolerance, format=fmt)


# ---------------------------------------------------------------------------
# Provider DSL
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """Collects registrations for one provider inside ``Configuration.provider``."""

    name: str
    verifier: Verifier | None = None
    idempotency_key: KeyExtractor | None = None
    event_key: EventKey | None = None
    entries: list[tuple[str, Any]] = field(default_factory=list)

    def register(self, event: str, handler: str | ProcessorFactory) -> None:
        self.entries.append((str(event), handler))


class Configuration:
    """Registry, verifiers, idempotency extractors and event store for all providers."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        instrumentation: Instrumentation | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = Registry()
        self.instrumentation = instrumentation or Instrumentation()
        self.event_store = EventStoreConfig()
        self.verifiers: dict[str, Verifier] = {}
        self.idempotency_keys: dict[str, KeyExtractor] = {}
        self.event_keys: dict[str, EventKey] = {}
        self._factories: dict[str, ProcessorFactory] = {}

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def processor_factory(self, name: str, factory: ProcessorFactory) -> None:
        """Add *factory* to the named factory map used by string registrations."""
        self._check_not_frozen()
        if not callable(factory):
            raise ConfigurationError(f"Processor factory {name!r} is not callable")
        self._factories[str(name)] = factory

    def register_processor(
        self, provider: str, event: str, handler: str | ProcessorFactory
    ) -> ProcessorBinding:
        """Bind *handler* to *(provider, event)*.

        *handler* is either a processor class / factory callable, or the
        name of an entry added with ``processor_factory``.
        """
        name, factory = self._resolve_handler(handler)
        return self.registry.register(str(provider), str(event), name, factory)

    @contextmanager
    def provider(self, name: str) -> Iterator[ProviderConfig]:
        """Group registrations for one provider; committed when the block exits."""
        self._check_not_frozen()
        provider_config = ProviderConfig(name=str(name))
        yield provider_config

        key = provider_config.name
        if provider_config.verifier is not None:
            self.verifiers[key] = provider_config.verifier
        if provider_config.idempotency_key is not None:
            self.idempotency_keys[key] = provider_config.idempotency_key
        if provider_config.event_key is not None:
            self.event_keys[key] = provider_config.event_key
        for event, handler in provider_config.entries:
            self.register_processor(key, event, handler)

    def use_redis_event_store(self, *, record_timing: str = "after") -> None:
        """Enable event recording and duplicate lookups against Redis."""
        self._check_not_frozen()
        self.event_store = EventStoreConfig(
            enabled=True,
            store=self.settings.redis_event_store(),
            record_timing=record_timing,
        )

    def freeze(self) -> None:
        """End the setup phase. Call once, before the first dispatch."""
        self.registry.freeze()
        logger.info(
            "Webhook configuration frozen (providers: %s)",
            self.registry.providers or ["none registered"],
        )

    @property
    def frozen(self) -> bool:
        return self.registry.frozen

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def processors_for(self, provider: Any, event: Any) -> tuple[ProcessorBinding, ...]:
        return self.registry.lookup(str(provider), str(event))

    def verifier_for(self, provider: Any) -> Verifier | None:
        return self.verifiers.get(str(provider))

    def idempotency_key_for(self, provider: Any) -> KeyExtractor | None:
        return self.idempotency_keys.get(str(provider))

    def event_key_for(self, provider: Any) -> EventKey | None:
        return self.event_keys.get(str(provider))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_handler(self, handler: str | ProcessorFactory) -> tuple[str, ProcessorFactory]:
        if isinstance(handler, str):
            try:
                return handler, self._factories[handler]
            except KeyError:
                raise ConfigurationError(
                    f"Unknown processor {handler!r}; add it with processor_factory() first"
                ) from None
        if not callable(handler):
            raise ConfigurationError(f"Processor {handler!r} is neither a name nor callable")
        return handler_name_for(handler), handler

    def _check_not_frozen(self) -> None:
        if self.frozen:
            raise ConfigurationError("Configuration is frozen")

"""hookrelay — verified, deduplicated, exactly-one-processor webhook dispatch.

Public API:
    - Configuration           — registry, verifiers, extractors, event store (freeze before serving)
    - Settings                — environment-driven deployment settings
    - Processor               — base class for webhook processors
    - Dispatcher              — routes one payload to exactly one processor
    - Matched / NoMatch / Ambiguous / Failed — typed dispatch outcomes
    - WebhookRequest          — immutable request with normalized headers and raw body
    - HmacVerifier            — HMAC signature verifier with optional freshness check
    - BearerTokenVerifier     — shared bearer-token verifier
    - Verifier                — base class for custom verifiers
    - secure_compare          — constant-time comparison primitive
    - verify_webhook          — run a provider's verifier if it is enabled
    - verifier_configured     — does a provider have an enabled verifier
    - extract_key / already_processed / composite_key / Extractors — idempotency
    - DispatcherJob / enqueue — background dispatch with duplicate suppression
    - Instrumentation         — lifecycle event sink (``<event>.hookrelay``)
    - InMemoryEventStore / RedisEventStore — duplicate-store backends
    - register_webhook_routes — FastAPI adapter (import from ``hookrelay.handlers``)
"""

from __future__ import annotations

from hookrelay.config import Configuration, ProviderConfig, Settings
from hookrelay.dispatcher import Ambiguous, Dispatcher, Failed, Matched, NoMatch
from hookrelay.errors import (
    ConfigurationError,
    HookrelayError,
    InvalidPayloadError,
    MultipleProcessorsError,
    NoProcessorError,
    PersistenceError,
    ProcessorError,
    UnknownEventError,
    VerificationError,
    VerificationReason,
)
from hookrelay.idempotency import Extractors, already_processed, composite_key, extract_key
from hookrelay.instrumentation import Instrumentation
from hookrelay.jobs import DispatcherJob, enqueue
from hookrelay.processor import Processor
from hookrelay.registry import ProcessorBinding, Registry
from hookrelay.request import WebhookRequest
from hookrelay.store import EventStoreConfig, InMemoryEventStore, RedisEventStore
from hookrelay.verification import (
    BearerTokenVerifier,
    HmacVerifier,
    TimestampOptions,
    Verifier,
    secure_compare,
    verifier_configured,
    verify_webhook,
)

__all__ = [
    "Ambiguous",
    "BearerTokenVerifier",
    "Configuration",
    "ConfigurationError",
    "Dispatcher",
    "DispatcherJob",
    "EventStoreConfig",
    "Extractors",
    "Failed",
    "HmacVerifier",
    "HookrelayError",
    "InMemoryEventStore",
    "Instrumentation",
    "InvalidPayloadError",
    "Matched",
    "MultipleProcessorsError",
    "NoMatch",
    "NoProcessorError",
    "PersistenceError",
    "Processor",
    "ProcessorBinding",
    "ProcessorError",
    "ProviderConfig",
    "RedisEventStore",
    "Registry",
    "Settings",
    "TimestampOptions",
    "UnknownEventError",
    "VerificationError",
    "VerificationReason",
    "Verifier",
    "WebhookRequest",
    "already_processed",
    "composite_key",
    "enqueue",
    "extract_key",
    "secure_compare",
    "verifier_configured",
    "verify_webhook",
]

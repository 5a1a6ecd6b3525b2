"""Webhook idempotency — duplicate-delivery suppression.

Contract:
- Each provider may configure an extractor ``payload -> key``
- A broken extractor never blocks processing: errors yield no key
- Duplicate lookups go to the configured event store
- If the store is disabled, unconfigured or failing, the delivery is
  treated as new (fail-open: duplicates are a usability concern, not a
  security one)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hookrelay.config import Configuration

logger = logging.getLogger(__name__)


def _field(payload: Any, name: str) -> Any:
    if isinstance(payload, Mapping):
        return payload.get(name)
    return getattr(payload, name, None)


def first_present(*fields: str):
    """Build an extractor returning the first non-None field of the payload."""

    def extractor(payload: Any) -> Any:
        for name in fields:
            value = _field(payload, name)
            if value is not None:
                return value
        return None

    extractor.__name__ = f"first_present({', '.join(fields)})"
    return extractor


class Extractors:
    """Pre-built extractors for common payload shapes."""

    # Stripe and most providers: top-level "id"
    ID = staticmethod(first_present("id"))
    STRIPE = ID
    # GitHub sends the delivery id as a header; hosts copy it into the payload
    GITHUB = staticmethod(first_present("delivery_id"))
    GENERIC = staticmethod(first_present("id", "event_id", "webhook_id"))


def composite_key(*parts: Any, separator: str = ":") -> str:
    """Join the non-None *parts* into a single key.

    >>> composite_key("stripe", None, "evt_123")
    'stripe:evt_123'
    """
    return separator.join(str(p) for p in parts if p is not None)


def extract_key(config: Configuration, provider: str, payload: Any) -> str | None:
    """Run the provider's extractor; ``None`` if unconfigured, empty or failing."""
    extractor = config.idempotency_key_for(provider)
    if extractor is None:
        return None
    try:
        key = extractor(payload)
    except Exception:
        logger.error(
            "Failed to extract idempotency key for %s", provider, exc_info=True
        )
        return None
    return None if key is None else str(key)


def already_processed(config: Configuration, provider: str, key: str | None) -> bool:
    """True only if the event store confirms *key* was seen for *provider*.

    The store lookup may block on I/O; do not hold locks across this call.
    """
    if key is None:
        return False
    store_config = config.event_store
    if not store_config.active:
        return False
    try:
        return bool(store_config.store.exists(str(provider), key))
    except Exception:
        logger.warning(
            "Duplicate store unavailable for webhook dedup, allowing %s/%s",
            provider, key,
            exc_info=True,
        )
        return False

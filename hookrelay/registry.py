"""Processor registry — provider -> ordered processor bindings.

The registry is built once during application setup and then frozen.
Lookups after ``freeze()`` are read-only and safe to share across threads;
registering while dispatch traffic is live is not supported.

Provider and event names are always stored as plain ``str``. They arrive
from untrusted webhook input, so they are never mapped into any fixed
identifier space.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from hookrelay.errors import ConfigurationError
from hookrelay.processor import ProcessorFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessorBinding:
    """One (event -> processor) registration under a provider."""

    event: str
    handler_name: str
    factory: ProcessorFactory


class Registry:
    """Mapping of provider name to processor bindings in registration order.

    Usage::

        registry = Registry()
        registry.register("stripe", "charge.succeeded", "ChargeSucceeded", ChargeSucceeded)
        registry.freeze()
        registry.lookup("stripe", "charge.succeeded")
    """

    def __init__(self) -> None:
        self._bindings: dict[str, list[ProcessorBinding]] = {}
        self._lock = threading.Lock()
        self._frozen = False

    # ------------------------------------------------------------------
    # Mutation (setup phase only)
    # ------------------------------------------------------------------

    def register(
        self,
        provider: str,
        event: str,
        handler_name: str,
        factory: ProcessorFactory,
    ) -> ProcessorBinding:
        """Append a binding for *(provider, event)*."""
        binding = ProcessorBinding(
            event=str(event), handler_name=str(handler_name), factory=factory
        )
        with self._lock:
            if self._frozen:
                raise ConfigurationError(
                    f"Registry is frozen; cannot register {handler_name} "
                    f"for {provider} event {event}",
                    provider=provider,
                    event=event,
                )
            self._bindings.setdefault(str(provider), []).append(binding)
        logger.debug("Registered processor %s for %s/%s", handler_name, provider, event)
        return binding

    def freeze(self) -> None:
        """End the setup phase. Further registration raises ``ConfigurationError``."""
        with self._lock:
            self._frozen = True

    def clear(self) -> None:
        """Drop all bindings (test isolation). Not allowed once frozen."""
        with self._lock:
            if self._frozen:
                raise ConfigurationError("Registry is frozen; cannot clear")
            self._bindings.clear()

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def providers(self) -> list[str]:
        return list(self._bindings)

    def lookup(self, provider: str, event: str) -> tuple[ProcessorBinding, ...]:
        """All bindings for *(provider, event)* in registration order.

        Unknown providers or events yield an empty tuple.
        """
        event = str(event)
        entries = self._bindings.get(str(provider), ())
        return tuple(b for b in entries if b.event == event)

    def bindings_for(self, provider: str) -> tuple[ProcessorBinding, ...]:
        return tuple(self._bindings.get(str(provider), ()))

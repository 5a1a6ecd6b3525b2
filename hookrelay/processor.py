"""Processor capability consumed by the dispatcher."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class Processor:
    """Base class for webhook processors.

    A processor is instantiated once per dispatch with the payload. The
    dispatcher calls ``can_handle`` on every processor bound to the
    provider/event pair and runs ``process`` on the single one that
    accepts the payload.

    Usage::

        class ChargeSucceeded(Processor):
            def can_handle(self, payload):
                return payload.get("livemode") is True

            def process(self):
                return record_charge(self.payload["data"]["object"])
    """

    def __init__(self, payload: Any) -> None:
        self.payload = payload

    def can_handle(self, payload: Any) -> bool:
        return True

    def process(self) -> Any:
        raise NotImplementedError(f"{type(self).__name__} must implement process()")


# Constructor closure: payload -> Processor
ProcessorFactory = Callable[[Any], Processor]


def handler_name_for(factory: ProcessorFactory) -> str:
    """Display name for a processor factory (class qualname or function name)."""
    return getattr(factory, "__qualname__", None) or getattr(
        factory, "__name__", type(factory).__name__
    )

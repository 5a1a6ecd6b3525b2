"""Error taxonomy for webhook verification and dispatch.

Every error carries the provider and event (plain strings, never derived
from an interned identifier space) so callers can map them to responses:

- VerificationError        -> 401 (reason code is machine-readable)
- MultipleProcessorsError  -> 500 (message never includes payload content)
- ProcessorError           -> wraps a handler exception, unmodified
- ConfigurationError       -> raised during setup, never per-request
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class VerificationReason(str, Enum):
    """Stable reason codes for verification failures."""

    MISSING_SIGNATURE = "missing_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    MISSING_TIMESTAMP = "missing_timestamp"
    INVALID_TIMESTAMP = "invalid_timestamp"
    TIMESTAMP_EXPIRED = "timestamp_expired"


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _coerce_reason(reason: Any) -> VerificationReason | str | None:
    # Custom verifiers may use their own codes; those stay plain strings
    if reason is None or isinstance(reason, VerificationReason):
        return reason
    try:
        return VerificationReason(reason)
    except ValueError:
        return str(reason)


class HookrelayError(Exception):
    """Base class for all hookrelay errors."""

    def __init__(
        self,
        message: str | None = None,
        *,
        provider: Any = None,
        event: Any = None,
    ) -> None:
        self.provider = _as_str(provider)
        self.event = _as_str(event)
        super().__init__(message)


class VerificationError(HookrelayError):
    """Raised by a verifier when an inbound request fails authentication."""

    def __init__(
        self,
        message: str = "Webhook verification failed",
        *,
        reason: VerificationReason | str | None = None,
        provider: Any = None,
        event: Any = None,
    ) -> None:
        self.reason = _coerce_reason(reason)
        super().__init__(message, provider=provider, event=event)


class NoProcessorError(HookrelayError):
    """No processor is registered for a provider/event pair.

    The dispatcher treats "no match" as a benign outcome and never raises
    this; it exists for hosts that want a strict mode.
    """

    def __init__(self, provider: Any, event: Any) -> None:
        super().__init__(
            f"No processor registered for {provider} event {event}",
            provider=provider,
            event=event,
        )


class MultipleProcessorsError(HookrelayError):
    """More than one processor claimed the same payload.

    Only the payload byte size is kept; the payload itself is never
    stored on the error or rendered into its message.
    """

    def __init__(
        self,
        provider: Any,
        event: Any,
        payload_size: int,
        processor_names: list[str] | None = None,
    ) -> None:
        self.payload_size = payload_size
        self.processor_names = list(processor_names or [])
        names = ", ".join(self.processor_names)
        super().__init__(
            f"Multiple processors found for {provider} event {event} "
            f"(processors=[{names}], payload_size={payload_size} bytes)",
            provider=provider,
            event=event,
        )


class ProcessorError(HookrelayError):
    """Wraps an exception raised by a processor's ``process()``."""

    def __init__(
        self,
        message: str,
        *,
        provider: Any,
        event: Any,
        processor_name: str,
        original_error: BaseException | None = None,
    ) -> None:
        self.processor_name = str(processor_name)
        self.original_error = original_error
        super().__init__(message, provider=provider, event=event)


class UnknownEventError(HookrelayError):
    """The event name could not be determined or is not recognized."""

    def __init__(self, provider: Any, event: Any = None) -> None:
        super().__init__(
            f"Unknown event '{event}' for provider '{provider}'",
            provider=provider,
            event=event,
        )


class InvalidPayloadError(HookrelayError):
    """The request body could not be turned into a payload mapping."""

    def __init__(
        self,
        message: str = "Invalid webhook payload",
        *,
        provider: Any = None,
        event: Any = None,
        validation_errors: list[str] | None = None,
    ) -> None:
        self.validation_errors = list(validation_errors or [])
        super().__init__(message, provider=provider, event=event)


class PersistenceError(HookrelayError):
    """An event store backend failed to record or look up an event."""

    def __init__(
        self,
        message: str = "Failed to persist webhook event",
        *,
        provider: Any = None,
        event: Any = None,
        original_error: BaseException | None = None,
    ) -> None:
        self.original_error = original_error
        super().__init__(message, provider=provider, event=event)


class ConfigurationError(HookrelayError):
    """Setup-time misconfiguration (bad algorithm, unknown processor, ...)."""

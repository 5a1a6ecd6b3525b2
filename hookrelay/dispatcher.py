"""Webhook dispatcher — routes a payload to exactly one processor.

Resolution:
1. Look up bindings for (provider, event)
2. Instantiate each bound processor with the payload, keep those whose
   ``can_handle(payload)`` is true
3. Zero candidates: NoMatch (logged, not an error)
   One candidate:   execute it -> Matched(result) or Failed(error)
   More than one:   Ambiguous(candidate names, payload byte size)

``dispatch()`` returns the typed outcome. ``run()`` is the raising form:
it returns the result (or None), raises ``MultipleProcessorsError`` on an
ambiguous match and re-raises a processor's own exception unchanged.

Security contract:
- Provider and event are coerced to plain ``str``
- Ambiguous-match errors carry the payload size, never payload content
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from hookrelay.errors import MultipleProcessorsError, ProcessorError
from hookrelay.store import EventRecorder, RecordTiming

if TYPE_CHECKING:
    from hookrelay.config import Configuration
    from hookrelay.processor import Processor
    from hookrelay.registry import ProcessorBinding

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


@dataclass(frozen=True)
class Matched:
    result: Any
    processor_name: str
    kind: ClassVar[OutcomeKind] = OutcomeKind.MATCHED


@dataclass(frozen=True)
class NoMatch:
    kind: ClassVar[OutcomeKind] = OutcomeKind.NO_MATCH


@dataclass(frozen=True)
class Ambiguous:
    candidate_names: tuple[str, ...]
    payload_size: int
    kind: ClassVar[OutcomeKind] = OutcomeKind.AMBIGUOUS


@dataclass(frozen=True)
class Failed:
    error: ProcessorError
    kind: ClassVar[OutcomeKind] = OutcomeKind.FAILED


DispatchOutcome = Matched | NoMatch | Ambiguous | Failed


def payload_size(payload: Any) -> int:
    """Byte size of the payload's serialized form."""
    if isinstance(payload, (bytes, bytearray)):
        return len(payload)
    if isinstance(payload, str):
        return len(payload.encode("utf-8"))
    try:
        return len(json.dumps(payload, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return len(repr(payload).encode("utf-8"))


@dataclass
class _Candidate:
    binding: ProcessorBinding
    processor: Processor = field(repr=False)


class Dispatcher:
    """Dispatch one webhook payload for *(provider, event)*.

    Args:
        config: Frozen ``Configuration`` holding the registry.
        provider: Provider name (any value; stored as ``str``).
        event: Event name (any value; stored as ``str``).
        payload: Parsed webhook payload handed to processors.
        idempotency_key: Passed through to the event recorder so the
            "after" record marks the delivery as processed.
    """

    def __init__(
        self,
        config: Configuration,
        *,
        provider: Any,
        event: Any,
        payload: Any,
        idempotency_key: str | None = None,
    ) -> None:
        self.config = config
        self.provider = str(provider)
        self.event = str(event)
        self.payload = payload
        self.idempotency_key = idempotency_key
        self._instrumentation = config.instrumentation
        self._recorder = EventRecorder(config.event_store, config.instrumentation)

    @property
    def _tags(self) -> dict[str, str]:
        return {"provider": self.provider, "event": self.event}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> Any:
        """Dispatch and return the processor's result, or None if nothing matched.

        Raises:
            MultipleProcessorsError: More than one processor accepted the payload.
            Exception: Whatever the matched processor raised, unchanged.
        """
        with self._instrumentation.instrument("dispatch", self._tags) as attrs:
            outcome = self.dispatch()
            attrs["outcome"] = outcome.kind.value

            if isinstance(outcome, Matched):
                attrs["processor"] = outcome.processor_name
                return outcome.result
            if isinstance(outcome, NoMatch):
                return None
            if isinstance(outcome, Ambiguous):
                error = MultipleProcessorsError(
                    self.provider,
                    self.event,
                    outcome.payload_size,
                    processor_names=list(outcome.candidate_names),
                )
                self._publish_error(error)
                raise error
            raise outcome.error.original_error

    def dispatch(self) -> DispatchOutcome:
        """Resolve and execute, returning a typed outcome instead of raising."""
        self._record(RecordTiming.BEFORE)

        candidates, failure = self._find_matching()
        if failure is not None:
            return failure

        if not candidates:
            return self._handle_no_processor()
        if len(candidates) > 1:
            return self._handle_multiple_processors(candidates)
        return self._execute(candidates[0])

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_matching(self) -> tuple[list[_Candidate], Failed | None]:
        matching: list[_Candidate] = []
        for binding in self.config.processors_for(self.provider, self.event):
            try:
                processor = binding.factory(self.payload)
                accepted = processor.can_handle(self.payload)
            except Exception as exc:
                return [], self._failed(binding.handler_name, exc)
            if accepted:
                matching.append(_Candidate(binding, processor))
        return matching, None

    def _handle_no_processor(self) -> NoMatch:
        self._instrumentation.publish("no_processor", self._tags)
        logger.warning(
            "No processor registered for %s event %s could handle the payload",
            self.provider, self.event,
        )
        return NoMatch()

    def _handle_multiple_processors(self, candidates: list[_Candidate]) -> Ambiguous:
        names = tuple(c.binding.handler_name for c in candidates)
        self._instrumentation.publish(
            "multiple_processors", {**self._tags, "processor_count": len(names)}
        )
        size = payload_size(self.payload)
        logger.error(
            "Multiple processors found for %s event %s: %s (payload_size=%d bytes)",
            self.provider, self.event, ", ".join(names), size,
        )
        return Ambiguous(candidate_names=names, payload_size=size)

    def _execute(self, candidate: _Candidate) -> Matched | Failed:
        name = candidate.binding.handler_name
        try:
            with self._instrumentation.instrument("process", {**self._tags, "processor": name}):
                result = candidate.processor.process()
        except Exception as exc:
            return self._failed(name, exc)

        self._record(RecordTiming.AFTER)
        return Matched(result=result, processor_name=name)

    def _failed(self, processor_name: str, exc: Exception) -> Failed:
        self._publish_error(exc)
        logger.error(
            "Error processing %s event %s in %s: %s",
            self.provider, self.event, processor_name, exc,
        )
        return Failed(
            ProcessorError(
                f"{processor_name} failed for {self.provider} event {self.event}: {exc}",
                provider=self.provider,
                event=self.event,
                processor_name=processor_name,
                original_error=exc,
            )
        )

    def _publish_error(self, exc: BaseException) -> None:
        self._instrumentation.publish(
            "error", {**self._tags, "error": str(exc), "error_class": type(exc).__name__}
        )

    def _record(self, timing: RecordTiming) -> None:
        # Only a completed dispatch marks the key as seen
        key = self.idempotency_key if timing is RecordTiming.AFTER else None
        self._recorder.record(
            provider=self.provider,
            event=self.event,
            payload=self.payload,
            timing=timing,
            idempotency_key=key,
        )

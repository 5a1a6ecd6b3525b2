"""Background dispatch — idempotency check followed by a normal dispatch.

The HTTP adapter acknowledges the delivery immediately and schedules
``DispatcherJob.perform`` on FastAPI ``BackgroundTasks``. Retry policy
belongs to whatever runs the job; nothing here retries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from hookrelay.dispatcher import Dispatcher
from hookrelay.idempotency import already_processed, extract_key

if TYPE_CHECKING:
    from fastapi import BackgroundTasks

    from hookrelay.config import Configuration

logger = logging.getLogger(__name__)


class DispatcherJob:
    """Runs a dispatch with duplicate suppression."""

    def __init__(self, config: Configuration) -> None:
        self.config = config

    def perform(
        self,
        *,
        provider: Any,
        event: Any,
        payload: Any,
        skip_idempotency_check: bool = False,
    ) -> Any:
        """Dispatch unless the delivery was already processed.

        Returns the processor result, or None for duplicates and unmatched events.
        """
        provider = str(provider)
        event = str(event)

        key = extract_key(self.config, provider, payload)
        if not skip_idempotency_check and already_processed(self.config, provider, key):
            logger.info("Skipping duplicate webhook: %s/%s (key=%s)", provider, event, key)
            self.config.instrumentation.publish(
                "duplicate", {"provider": provider, "event": event, "key": key}
            )
            return None

        return Dispatcher(
            self.config,
            provider=provider,
            event=event,
            payload=payload,
            idempotency_key=key,
        ).run()

    def run_logged(self, **kwargs: Any) -> None:
        """``perform`` for fire-and-forget contexts: failures are logged, not raised."""
        try:
            self.perform(**kwargs)
        except Exception:
            logger.exception(
                "Background webhook dispatch failed: %s/%s",
                kwargs.get("provider"), kwargs.get("event"),
            )


def enqueue(
    background_tasks: BackgroundTasks,
    config: Configuration,
    *,
    provider: str,
    event: str,
    payload: Any,
    skip_idempotency_check: bool = False,
) -> None:
    """Schedule a dispatch to run after the response has been sent."""
    background_tasks.add_task(
        DispatcherJob(config).run_logged,
        provider=str(provider),
        event=str(event),
        payload=payload,
        skip_idempotency_check=skip_idempotency_check,
    )
    logger.debug("Queued webhook dispatch: %s/%s", provider, event)

"""FastAPI webhook routes — maps HTTP requests onto verify + dispatch.

Each request:
1. Reads the raw body (needed for HMAC verification)
2. Verifies it with the provider's verifier, if one is enabled
3. Parses the JSON payload and derives the event name
4. Dispatches inline (200) or schedules a background dispatch (202)

Security contract:
- Never return error details to the webhook caller
- Return 401 only for verification failures; the reason is logged, not echoed
- Ambiguous matches and processor failures are 500 with no body details
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from hookrelay.dispatcher import Dispatcher
from hookrelay.errors import (
    InvalidPayloadError,
    MultipleProcessorsError,
    UnknownEventError,
    VerificationError,
)
from hookrelay.jobs import enqueue
from hookrelay.request import WebhookRequest
from hookrelay.verification import verify_webhook

if TYPE_CHECKING:
    from fastapi import FastAPI

    from hookrelay.config import Configuration

logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Event-Type"
_PAYLOAD_EVENT_FIELDS = ("type", "event")


def _log_webhook(provider: str, event: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info("WEBHOOK_AUDIT provider=%s event=%s status=%s", provider, event, status)


def parse_payload(provider: str, body: bytes) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        InvalidPayloadError: Body is not valid UTF-8 JSON or not an object.
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidPayloadError(
            "Webhook body is not valid JSON", provider=provider, validation_errors=[str(exc)]
        ) from exc
    if not isinstance(payload, dict):
        raise InvalidPayloadError(
            "Webhook body must be a JSON object",
            provider=provider,
            validation_errors=[f"got {type(payload).__name__}"],
        )
    return payload


def resolve_event(
    config: Configuration, provider: str, payload: dict[str, Any], request: WebhookRequest
) -> str:
    """Event name from the provider's ``event_key``, the payload, or ``X-Event-Type``.

    Raises:
        UnknownEventError: No event name could be derived.
    """
    event_key = config.event_key_for(provider)
    if event_key is not None:
        try:
            event = event_key(payload, request)
        except Exception as exc:
            logger.warning("event_key failed for %s: %s", provider, exc)
            raise UnknownEventError(provider) from exc
    else:
        event = next(
            (payload[f] for f in _PAYLOAD_EVENT_FIELDS if payload.get(f) not in (None, "")),
            None,
        )
        if event is None:
            event = request.header(EVENT_HEADER)
    if event in (None, ""):
        raise UnknownEventError(provider)
    return str(event)


def _known_provider(config: Configuration, provider: str) -> bool:
    return provider in config.registry.providers or config.verifier_for(provider) is not None


async def _handle_webhook(
    request: Request,
    provider: str,
    config: Configuration,
    background_tasks: BackgroundTasks,
    asynchronous: bool,
) -> JSONResponse:
    start = time.time()

    if not _known_provider(config, provider):
        _log_webhook(provider, "unknown", "unknown_provider")
        return JSONResponse({"status": "not_found"}, status_code=404)

    webhook_request = await WebhookRequest.from_starlette(request)

    # 1. Verify
    try:
        verify_webhook(config, provider, webhook_request)
    except VerificationError:
        _log_webhook(provider, "unknown", "verification_failed")
        return JSONResponse({"status": "unauthorized"}, status_code=401)

    # 2. Payload + event name
    try:
        payload = parse_payload(provider, webhook_request.body)
        event = resolve_event(config, provider, payload, webhook_request)
    except InvalidPayloadError:
        _log_webhook(provider, "unknown", "invalid_payload")
        return JSONResponse({"status": "invalid_payload"}, status_code=400)
    except UnknownEventError:
        _log_webhook(provider, "unknown", "unknown_event")
        return JSONResponse({"status": "unknown_event"}, status_code=400)

    # 3a. Background dispatch
    if asynchronous:
        enqueue(background_tasks, config, provider=provider, event=event, payload=payload)
        _log_webhook(provider, event, "queued")
        return JSONResponse({"status": "received"}, status_code=202)

    # 3b. Inline dispatch (processors are sync; keep them off the event loop)
    dispatcher = Dispatcher(config, provider=provider, event=event, payload=payload)
    try:
        await run_in_threadpool(dispatcher.run)
    except MultipleProcessorsError as exc:
        logger.error("Webhook error: %s", exc)
        _log_webhook(provider, event, "ambiguous")
        return JSONResponse({"status": "error"}, status_code=500)
    except Exception:
        logger.exception("Webhook processing failed: %s/%s", provider, event)
        _log_webhook(provider, event, "failed")
        return JSONResponse({"status": "error"}, status_code=500)

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s/%s", elapsed_ms, provider, event)
    _log_webhook(provider, event, "processed")
    return JSONResponse({"status": "processed"}, status_code=200)


def register_webhook_routes(
    app: FastAPI | APIRouter,
    config: Configuration,
    *,
    prefix: str = "/webhooks",
    asynchronous: bool = False,
) -> APIRouter:
    """Add ``POST {prefix}/{provider}`` to *app*.

    *config* should already be frozen; routes read it without locking.
    """
    if not config.frozen:
        logger.warning("Registering webhook routes with an unfrozen configuration")

    router = APIRouter(prefix=prefix)

    @router.post("/{provider}")
    async def receive_webhook(
        request: Request, provider: str, background_tasks: BackgroundTasks
    ) -> JSONResponse:
        """Receive a webhook for *provider* (verified when a verifier is configured)."""
        return await _handle_webhook(request, provider, config, background_tasks, asynchronous)

    app.include_router(router)
    logger.info(
        "Webhook routes registered: %s/{%s}",
        prefix, ",".join(config.registry.providers),
    )
    return router

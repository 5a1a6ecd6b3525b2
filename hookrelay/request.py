"""Framework-neutral view of an inbound webhook request.

Verifiers only ever see a ``WebhookRequest``: normalized headers plus the
raw body bytes exactly as received. The body is never re-serialized, since
HMAC signatures are computed over the original bytes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from starlette.requests import Request as StarletteRequest

_RAW_HEADER_KEYS = ("CONTENT_TYPE", "CONTENT_LENGTH")


def normalize_header_name(name: Any) -> str:
    """``X-Hub-Signature`` / ``x_hub_signature`` / ``HTTP_X_HUB_SIGNATURE`` -> ``X_HUB_SIGNATURE``."""
    normalized = str(name).upper().replace("-", "_")
    if normalized.startswith("HTTP_"):
        normalized = normalized[len("HTTP_"):]
    return normalized


def _to_bytes(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    return str(body).encode("utf-8")


@dataclass(frozen=True)
class WebhookRequest:
    """Immutable inbound request: headers, raw body, method and path."""

    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    method: str = "POST"
    path: str = "/"
    payload: Any = None

    def __post_init__(self) -> None:
        raw = self.headers if isinstance(self.headers, Mapping) else {}
        normalized = {normalize_header_name(k): str(v) for k, v in raw.items()}
        object.__setattr__(self, "headers", MappingProxyType(normalized))
        object.__setattr__(self, "body", _to_bytes(self.body))
        object.__setattr__(self, "method", str(self.method or "POST").upper())
        object.__setattr__(self, "path", str(self.path or "/"))

    def header(self, name: str) -> str | None:
        """Look up a header regardless of case or ``-``/``_`` convention."""
        return self.headers.get(normalize_header_name(name))

    def __getitem__(self, name: str) -> str | None:
        return self.header(name)

    @property
    def body_size(self) -> int:
        return len(self.body)

    @classmethod
    def from_wsgi_environ(cls, environ: Mapping[str, Any]) -> WebhookRequest:
        """Build a request from a WSGI environ dict.

        Reads ``CONTENT_LENGTH`` bytes from ``wsgi.input`` when present.
        """
        headers = {
            k: v
            for k, v in environ.items()
            if k.startswith("HTTP_") or k in _RAW_HEADER_KEYS
        }
        body = b""
        stream = environ.get("wsgi.input")
        if stream is not None:
            try:
                length = int(environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                length = 0
            body = stream.read(length) if length > 0 else b""
        return cls(
            headers=headers,
            body=body,
            method=environ.get("REQUEST_METHOD", "POST"),
            path=environ.get("PATH_INFO", "/"),
        )

    @classmethod
    async def from_starlette(cls, request: StarletteRequest) -> WebhookRequest:
        """Build a request from a FastAPI/Starlette request (raw body, not JSON)."""
        body = await request.body()
        return cls(
            headers=dict(request.headers.items()),
            body=body,
            method=request.method,
            path=request.url.path,
        )

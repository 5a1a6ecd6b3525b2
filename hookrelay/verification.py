"""Webhook request verification — HMAC and bearer-token schemes.

Security contract:
- Every comparison goes through secure_compare() (length check, then
  XOR-accumulate over all bytes; no early exit on the first mismatch)
- HMAC is computed over the raw body bytes exactly as received
- Timestamp freshness is checked before the signature, so stale requests
  are rejected without computing a digest
- A verifier that is not enabled is skipped by the caller; verify() does
  not re-check enablement
"""

from __future__ import annotations

import base64
import hmac
import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

from hookrelay.errors import ConfigurationError, VerificationError, VerificationReason
from hookrelay.request import WebhookRequest

if TYPE_CHECKING:
    from hookrelay.config import Configuration

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS: dict[str, str] = {
    "sha1": "sha1",
    "sha256": "sha256",
    "sha384": "sha384",
    "sha512": "sha512",
}

DEFAULT_TIMESTAMP_TOLERANCE = 300


class SignatureEncoding(str, Enum):
    HEX = "hex"
    BASE64 = "base64"


class TimestampFormat(str, Enum):
    UNIX = "unix"
    ISO8601 = "iso8601"


def secure_compare(expected: str | bytes | None, actual: str | bytes | None) -> bool:
    """Constant-time equality check for secrets and signatures.

    Lengths are compared first (a length mismatch is not secret). For
    equal lengths every byte pair is XORed into an accumulator, so the
    running time does not depend on where the first difference is.
    """
    if expected is None or actual is None:
        return False
    left = expected.encode("utf-8") if isinstance(expected, str) else bytes(expected)
    right = actual.encode("utf-8") if isinstance(actual, str) else bytes(actual)
    if len(left) != len(right):
        return False
    result = 0
    for x, y in zip(left, right):
        result |= x ^ y
    return result == 0


class Verifier:
    """Base verifier. Subclasses implement ``verify``.

    Usage::

        class SharedSecretVerifier(Verifier):
            def __init__(self, secret):
                self.secret = secret

            def verify(self, request):
                if not secure_compare(self.secret, request.header("X-Secret")):
                    raise VerificationError("Invalid secret", reason="invalid_token")
    """

    def verify(self, request: WebhookRequest) -> None:
        """Return normally if *request* is authentic, else raise ``VerificationError``."""
        raise NotImplementedError(f"{type(self).__name__} must implement verify()")

    def enabled(self) -> bool:
        return True


@dataclass(frozen=True)
class TimestampOptions:
    """Replay-protection settings for ``HmacVerifier``."""

    header: str
    tolerance: int = DEFAULT_TIMESTAMP_TOLERANCE
    format: TimestampFormat = TimestampFormat.UNIX

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "format", TimestampFormat(self.format))
        except ValueError:
            raise ConfigurationError(
                f"Unsupported timestamp format: {self.format}. Supported: unix, iso8601"
            ) from None


class HmacVerifier(Verifier):
    """HMAC signature verifier (GitHub, Shopify, Printful style).

    Args:
        secret: Shared secret.
        header: Header carrying the signature (any case/convention).
        algorithm: One of sha1, sha256, sha384, sha512.
        encoding: ``hex`` (lowercase) or ``base64``.
        signature_prefix: Scheme tag stripped from the provided signature,
            e.g. ``"sha256="``.
        timestamp: Optional ``TimestampOptions`` (or a dict with the same
            keys) enabling the freshness check.

    Raises:
        ConfigurationError: Unsupported algorithm, encoding or timestamp format.
    """

    def __init__(
        self,
        secret: str | bytes | None,
        header: str | None,
        *,
        algorithm: str = "sha256",
        encoding: SignatureEncoding | str = SignatureEncoding.HEX,
        signature_prefix: str | None = None,
        timestamp: TimestampOptions | dict | None = None,
    ) -> None:
        self.secret = secret
        self.header = header
        self.algorithm = self._validate_algorithm(algorithm)
        try:
            self.encoding = SignatureEncoding(encoding)
        except ValueError:
            raise ConfigurationError(
                f"Unsupported signature encoding: {encoding}. Supported: hex, base64"
            ) from None
        self.signature_prefix = signature_prefix or None
        self.timestamp = self._build_timestamp_options(timestamp)

    @staticmethod
    def _validate_algorithm(algorithm: str) -> str:
        algo = str(algorithm).lower()
        if algo not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported algorithm: {algorithm}. "
                f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        return SUPPORTED_ALGORITHMS[algo]

    @staticmethod
    def _build_timestamp_options(
        options: TimestampOptions | dict | None,
    ) -> TimestampOptions | None:
        if options is None or isinstance(options, TimestampOptions):
            return options
        try:
            return TimestampOptions(
                header=options["header"],
                tolerance=int(options.get("tolerance", DEFAULT_TIMESTAMP_TOLERANCE)),
                format=TimestampFormat(options.get("format", TimestampFormat.UNIX)),
            )
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(f"Invalid timestamp options: {exc}") from exc

    def enabled(self) -> bool:
        return bool(self.secret) and bool(self.header)

    def verify(self, request: WebhookRequest) -> None:
        signature = self._extract_signature(request)
        if signature is None:
            raise VerificationError(
                "Missing signature header", reason=VerificationReason.MISSING_SIGNATURE
            )

        if self.timestamp is not None:
            self._verify_timestamp(request)

        expected = self.compute_signature(request.body)
        if secure_compare(expected, signature):
            return
        raise VerificationError(
            "Invalid signature", reason=VerificationReason.SIGNATURE_MISMATCH
        )

    def compute_signature(self, body: bytes) -> str:
        """Encoded HMAC digest of *body* under the configured secret."""
        secret = self.secret.encode("utf-8") if isinstance(self.secret, str) else self.secret
        digest = hmac.new(secret or b"", body, self.algorithm).digest()
        if self.encoding is SignatureEncoding.BASE64:
            return base64.b64encode(digest).decode("ascii")
        return digest.hex()

    def _extract_signature(self, request: WebhookRequest) -> str | None:
        raw = request.header(self.header or "")
        if not raw:
            return None
        signature = raw
        if self.signature_prefix and signature.startswith(self.signature_prefix):
            signature = signature[len(self.signature_prefix):]
        return signature.strip()

    def _verify_timestamp(self, request: WebhookRequest) -> None:
        opts = self.timestamp
        value = request.header(opts.header)
        if not value:
            raise VerificationError(
                "Missing timestamp header", reason=VerificationReason.MISSING_TIMESTAMP
            )

        ts = self._parse_timestamp(value.strip(), opts.format)
        if ts is None:
            raise VerificationError(
                "Invalid timestamp format", reason=VerificationReason.INVALID_TIMESTAMP
            )

        # Symmetric window: far-future timestamps are rejected like stale ones
        age = abs(time.time() - ts)
        if age > opts.tolerance:
            raise VerificationError(
                f"Request timestamp outside tolerance ({int(age)}s > {opts.tolerance}s)",
                reason=VerificationReason.TIMESTAMP_EXPIRED,
            )

    @staticmethod
    def _parse_timestamp(value: str, fmt: TimestampFormat) -> float | None:
        try:
            if fmt is TimestampFormat.ISO8601:
                parsed = datetime.fromisoformat(value)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed.timestamp()
            ts = float(value)
        except (ValueError, TypeError, OverflowError):
            return None
        return ts if math.isfinite(ts) else None


class BearerTokenVerifier(Verifier):
    """Shared bearer-token verifier.

    Args:
        token: Expected token.
        header: Header carrying the token (default ``Authorization``).
        strip_bearer_prefix: Remove a leading ``Bearer `` (any case) first.
    """

    DEFAULT_HEADER = "Authorization"
    _PREFIX = re.compile(r"\Abearer(?:\s+|\Z)", re.IGNORECASE)

    def __init__(
        self,
        token: str | None,
        header: str = DEFAULT_HEADER,
        *,
        strip_bearer_prefix: bool = True,
    ) -> None:
        self.token = token
        self.header = header
        self.strip_bearer_prefix = strip_bearer_prefix

    def enabled(self) -> bool:
        return bool(self.token)

    def verify(self, request: WebhookRequest) -> None:
        provided = self._extract_token(request)
        if not provided:
            raise VerificationError(
                "Missing authentication token", reason=VerificationReason.MISSING_TOKEN
            )
        if secure_compare(self.token, provided):
            return
        raise VerificationError(
            "Invalid authentication token", reason=VerificationReason.INVALID_TOKEN
        )

    def _extract_token(self, request: WebhookRequest) -> str | None:
        raw = request.header(self.header)
        if raw is None:
            return None
        token = raw.strip()
        if self.strip_bearer_prefix:
            token = self._PREFIX.sub("", token, count=1)
        return token or None


# ---------------------------------------------------------------------------
# Provider-level entry points
# ---------------------------------------------------------------------------


def verifier_configured(config: Configuration, provider: str) -> bool:
    """True if *provider* has a verifier that is enabled."""
    verifier = config.verifier_for(provider)
    return verifier is not None and verifier.enabled()


def verify_webhook(config: Configuration, provider: str, request: WebhookRequest) -> None:
    """Verify *request* with the provider's verifier, if one is enabled.

    Raises:
        VerificationError: The request failed authentication. ``provider``
            is attached to the error before it propagates.
    """
    verifier = config.verifier_for(provider)
    if verifier is None or not verifier.enabled():
        return
    try:
        verifier.verify(request)
    except VerificationError as exc:
        exc.provider = str(provider)
        reason = getattr(exc.reason, "value", exc.reason)
        logger.warning("Webhook verification failed: provider=%s reason=%s", provider, reason)
        config.instrumentation.publish(
            "verification_failed", {"provider": str(provider), "reason": reason}
        )
        raise

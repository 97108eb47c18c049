"""Inbound webhook signature verification.

Each vendor signs the raw request body with a shared secret. Supported shapes:

- **Timestamped HMAC-SHA256** (Stripe): ``t=<unix>,v1=<hex>`` where the MAC
  covers ``b"<t>." + raw_body``. The timestamp must be within
  ``max_skew_seconds`` of now; this is checked before the MAC comparison.
- **Prefixed HMAC-SHA256** (WhatsApp / Meta): ``sha256=<hex>`` over the raw
  body, compared as the full prefixed string.
- **Hex HMAC-SHA256** (ClickSign): bare ``<hex>`` over the raw body.

The MAC is always computed over the exact bytes received. Callers must read
the body with ``await request.body()`` before any JSON parsing.

Verification never raises on attacker-controlled input; every malformed or
forged request resolves to a ``VerificationResult`` carrying a stable
``WebhookFailure`` code. Missing secrets are configuration errors and raise
``WebhookConfigurationError`` at startup.

Replay inside the freshness window is not prevented here. Handlers that need
exactly-once semantics must deduplicate on the vendor's event ID.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from core.config import Settings
from core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SKEW_SECONDS = 300

# ASCII digits only, bounded so int() and the ascii encode below cannot fail.
_TIMESTAMP_RE = re.compile(r"[0-9]{1,15}")


class WebhookConfigurationError(RuntimeError):
    """A webhook vendor is registered without a usable secret."""


class WebhookFailure(str, Enum):
    """Stable machine-readable rejection codes."""

    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    INVALID_SIGNATURE_FORMAT = "INVALID_SIGNATURE_FORMAT"
    TIMESTAMP_TOO_OLD = "TIMESTAMP_TOO_OLD"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UNKNOWN_VENDOR = "UNKNOWN_VENDOR"


class SignatureScheme(str, Enum):
    TIMESTAMPED_HMAC_SHA256 = "timestamped_hmac_sha256"
    PREFIXED_HMAC_SHA256 = "prefixed_hmac_sha256"
    HEX_HMAC_SHA256 = "hex_hmac_sha256"


@dataclass(frozen=True)
class WebhookVendor:
    """Registration for one inbound webhook sender.

    Attributes:
        name: Vendor key used in the route path (``/api/webhooks/<name>``).
        header: Request header carrying the signature (case-insensitive).
        scheme: How the signature header is built.
        secret: Shared signing secret.
    """

    name: str
    header: str
    scheme: SignatureScheme
    secret: str | bytes


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    failure: WebhookFailure | None = None
    reason: str | None = None

    @classmethod
    def ok(cls) -> VerificationResult:
        return cls(valid=True)

    @classmethod
    def fail(cls, failure: WebhookFailure, reason: str) -> VerificationResult:
        return cls(valid=False, failure=failure, reason=reason)


def _secret_bytes(secret: str | bytes) -> bytes:
    return secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)


def compute_hmac_sha256_hex(secret: str | bytes, message: bytes) -> str:
    return hmac.new(_secret_bytes(secret), message, hashlib.sha256).hexdigest()


def sign_timestamped(secret: str | bytes, raw_body: bytes, timestamp: int) -> str:
    """Build a ``t=<unix>,v1=<hex>`` header value."""
    signed_payload = f"{timestamp}.".encode("ascii") + raw_body
    return f"t={timestamp},v1={compute_hmac_sha256_hex(secret, signed_payload)}"


def sign_prefixed(secret: str | bytes, raw_body: bytes) -> str:
    """Build a ``sha256=<hex>`` header value."""
    return "sha256=" + compute_hmac_sha256_hex(secret, raw_body)


def sign_hex(secret: str | bytes, raw_body: bytes) -> str:
    return compute_hmac_sha256_hex(secret, raw_body)


def constant_time_equals(candidate: str, expected: str) -> bool:
    """Compare two signature strings without leaking content via timing.

    Unequal lengths fail immediately; that reveals only the length, which is
    fixed by the hash algorithm and therefore public.
    """
    try:
        candidate_bytes = candidate.encode("ascii")
    except UnicodeEncodeError:
        return False
    expected_bytes = expected.encode("ascii")
    if len(candidate_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(candidate_bytes, expected_bytes)


def parse_timestamped_header(header_value: str) -> tuple[str, list[str]] | None:
    """Split ``t=<unix>,v1=<hex>[,v1=<hex>...]`` into its parts.

    Returns ``None`` when either part is absent. Multiple ``v1`` entries are
    kept (senders emit several while rolling secrets).
    """
    timestamp: str | None = None
    signatures: list[str] = []
    for element in header_value.split(","):
        key, sep, value = element.strip().partition("=")
        if not sep:
            continue
        if key == "t" and timestamp is None:
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp or not signatures:
        return None
    return timestamp, signatures


class WebhookSignatureVerifier:
    """Verify inbound webhook signatures for a set of registered vendors.

    Args:
        vendors: Vendor registrations.
        max_skew_seconds: Freshness window for timestamped signatures.
        clock: Returns the current Unix time; injectable for tests.
    """

    def __init__(
        self,
        vendors: Iterable[WebhookVendor] = (),
        *,
        max_skew_seconds: int = DEFAULT_MAX_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._vendors: dict[str, WebhookVendor] = {}
        self.max_skew_seconds = max_skew_seconds
        self._clock = clock
        for vendor in vendors:
            self.register(vendor)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> WebhookSignatureVerifier:
        """Build the Stripe / WhatsApp / ClickSign registrations.

        Outside debug mode a missing secret is fatal. In debug mode the
        vendor is left unregistered and its route answers 404.
        """
        candidates = [
            (
                "stripe",
                "stripe-signature",
                SignatureScheme.TIMESTAMPED_HMAC_SHA256,
                settings.stripe_webhook_secret,
                "STRIPE_WEBHOOK_SECRET",
            ),
            (
                "whatsapp",
                "x-hub-signature-256",
                SignatureScheme.PREFIXED_HMAC_SHA256,
                settings.whatsapp_app_secret,
                "WHATSAPP_APP_SECRET",
            ),
            (
                "clicksign",
                "x-clicksign-signature",
                SignatureScheme.HEX_HMAC_SHA256,
                settings.clicksign_webhook_secret,
                "CLICKSIGN_WEBHOOK_SECRET",
            ),
        ]

        vendors: list[WebhookVendor] = []
        for name, header, scheme, secret, env_name in candidates:
            if not secret:
                if not settings.debug:
                    raise WebhookConfigurationError(
                        f"{env_name} is required for {name} webhook validation"
                    )
                logger.warning("webhook.vendor_disabled", vendor=name, missing=env_name)
                continue
            vendors.append(WebhookVendor(name, header, scheme, secret))

        return cls(
            vendors,
            max_skew_seconds=settings.webhook_max_skew_seconds,
            clock=clock,
        )

    def register(self, vendor: WebhookVendor) -> None:
        if not vendor.secret:
            raise WebhookConfigurationError(
                f"Webhook vendor '{vendor.name}' has no signing secret"
            )
        self._vendors[vendor.name] = vendor

    def vendors(self) -> list[str]:
        return sorted(self._vendors)

    def header_for(self, name: str) -> str | None:
        vendor = self._vendors.get(name)
        return vendor.header if vendor else None

    def verify(
        self,
        vendor: str,
        raw_body: bytes,
        header_value: str | None,
        secret: str | bytes | None = None,
    ) -> VerificationResult:
        """Verify *header_value* against *raw_body* for *vendor*.

        Args:
            vendor: Registered vendor name.
            raw_body: Request body exactly as received.
            header_value: Value of the vendor's signature header, if any.
            secret: Overrides the registered secret.
        """
        if isinstance(raw_body, str):
            raise TypeError("raw_body must be the undecoded request bytes")

        registration = self._vendors.get(vendor)
        if registration is None:
            return VerificationResult.fail(
                WebhookFailure.UNKNOWN_VENDOR, f"Unknown webhook vendor '{vendor}'"
            )

        if not header_value:
            return VerificationResult.fail(
                WebhookFailure.MISSING_SIGNATURE, "Missing signature"
            )

        key = secret if secret is not None else registration.secret
        if not key:
            raise WebhookConfigurationError(
                f"Webhook vendor '{vendor}' has no signing secret"
            )

        body = bytes(raw_body)
        if registration.scheme is SignatureScheme.TIMESTAMPED_HMAC_SHA256:
            return self._verify_timestamped(body, header_value, key)
        if registration.scheme is SignatureScheme.PREFIXED_HMAC_SHA256:
            return self._verify_exact(header_value, sign_prefixed(key, body))
        return self._verify_exact(header_value, sign_hex(key, body))

    def _verify_timestamped(
        self, body: bytes, header_value: str, secret: str | bytes
    ) -> VerificationResult:
        parsed = parse_timestamped_header(header_value)
        if parsed is None or not _TIMESTAMP_RE.fullmatch(parsed[0]):
            return VerificationResult.fail(
                WebhookFailure.INVALID_SIGNATURE_FORMAT, "Invalid signature format"
            )

        timestamp_text, candidates = parsed
        timestamp = int(timestamp_text)
        now = int(self._clock())
        if abs(now - timestamp) > self.max_skew_seconds:
            return VerificationResult.fail(
                WebhookFailure.TIMESTAMP_TOO_OLD, "Webhook timestamp too old"
            )

        signed_payload = f"{timestamp_text}.".encode("ascii") + body
        expected = compute_hmac_sha256_hex(secret, signed_payload)
        # Evaluate every candidate so timing does not depend on which matched.
        matches = [constant_time_equals(candidate, expected) for candidate in candidates]
        if not any(matches):
            return VerificationResult.fail(
                WebhookFailure.INVALID_SIGNATURE, "Invalid signature"
            )
        return VerificationResult.ok()

    @staticmethod
    def _verify_exact(header_value: str, expected: str) -> VerificationResult:
        if not constant_time_equals(header_value, expected):
            return VerificationResult.fail(
                WebhookFailure.INVALID_SIGNATURE, "Invalid signature"
            )
        return VerificationResult.ok()

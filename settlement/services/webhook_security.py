"""Webhook signature verification and replay defense.

Circle signs each notification with ECDSA/SHA-256 and names the signing key
in ``X-Circle-Key-Id``. Public keys are fetched on demand and cached for a
bounded lifetime so rotated keys are eventually picked up.
"""

import base64
import binascii
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from settlement.core.errors import WebhookVerificationError
from settlement.core.utils import get_logger

logger = get_logger("settlement.webhooks")


class PublicKeyCache:
    """Key id -> public key, each entry valid for ``ttl_seconds``."""

    def __init__(
        self,
        fetch: Callable[[str], str],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize with a fetcher returning base64 DER (SPKI) keys."""
        self.fetch = fetch
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, ec.EllipticCurvePublicKey]] = {}
        self._lock = threading.Lock()

    def get(self, key_id: str) -> ec.EllipticCurvePublicKey:
        """Return the cached key or fetch and cache it."""
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key_id)
            if entry and entry[0] > now:
                return entry[1]
        key = load_notification_public_key(self.fetch(key_id))
        with self._lock:
            self._entries[key_id] = (now + self.ttl_seconds, key)
        return key


def load_notification_public_key(public_key_b64: str) -> ec.EllipticCurvePublicKey:
    """Parse a base64 DER SubjectPublicKeyInfo into an EC public key."""
    try:
        key = serialization.load_der_public_key(base64.b64decode(public_key_b64))
    except (binascii.Error, ValueError) as exc:
        msg = "Notification public key is not valid base64 DER."
        raise WebhookVerificationError(msg) from exc
    if not isinstance(key, ec.EllipticCurvePublicKey):
        msg = "Notification public key is not an EC key."
        raise WebhookVerificationError(msg)
    return key


def verify_signature(public_key: ec.EllipticCurvePublicKey, body: bytes, signature_b64: str) -> bool:
    """Return True if ``signature_b64`` is a valid DER ECDSA/SHA-256 signature of ``body``."""
    try:
        signature = base64.b64decode(signature_b64, validate=True)
        public_key.verify(signature, body, ec.ECDSA(hashes.SHA256()))
    except (binascii.Error, ValueError, InvalidSignature):
        return False
    return True


def parse_notification_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 notification timestamp; None if absent or malformed."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable notification timestamp: {value!r}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def is_replayed(timestamp: datetime | None, window_seconds: float, now: datetime | None = None) -> bool:
    """Return True if a notification is older than the replay window.

    A window of 0 disables the check. Notifications without a timestamp pass.
    """
    if window_seconds <= 0 or timestamp is None:
        return False
    current = now or datetime.now(UTC)
    return (current - timestamp).total_seconds() > window_seconds

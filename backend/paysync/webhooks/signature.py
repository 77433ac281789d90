"""Webhook signature verification: constant-time HMAC-SHA256.

Security contract:
- The HMAC is computed over the raw request body exactly as received.
  Never re-serialize parsed JSON before verifying: byte layout changes.
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- Missing secret -> verification always fails (fail-closed)
- Each failure mode raises its own AuthenticationFailure subclass
"""

import hashlib
import hmac
import re

from paysync.core.exceptions import (
    MalformedSignature,
    MissingSignature,
    SecretNotConfigured,
    SignatureMismatch,
)

# Hex-encoded SHA-256 digest
_SIGNATURE_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


def compute_signature(payload: bytes, secret: str) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``payload`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str | None, secret: str | None) -> None:
    """Verify a webhook signature. Pure check: no I/O, payload is not parsed.

    Args:
        payload: Raw request body bytes
        signature: Value of the signature header (None if absent)
        secret: Shared webhook secret from configuration

    Raises:
        SecretNotConfigured: No secret configured
        MissingSignature: Header absent or blank
        MalformedSignature: Header is not a 64-char hex digest
        SignatureMismatch: Digest does not match the payload
    """
    if not secret:
        raise SecretNotConfigured("Webhook secret is not configured")

    if signature is None or not signature.strip():
        raise MissingSignature("Signature header is missing")

    received = signature.strip()
    if not _SIGNATURE_PATTERN.match(received):
        raise MalformedSignature("Signature is not a hex-encoded SHA-256 digest")

    expected = compute_signature(payload, secret)
    if not hmac.compare_digest(expected, received.lower()):
        raise SignatureMismatch("Signature does not match payload")

"""
Webhook signature validation - verify Airtable pings are authentic.

Airtable signs every notification with HMAC-SHA256 over the raw request body, keyed by
the webhook's MAC secret, and sends it as:

    X-Airtable-Content-MAC: hmac-sha256=<hex digest>
"""
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MAC_HEADER = "X-Airtable-Content-MAC"
MAC_PREFIX = "hmac-sha256="

VERIFICATION_VALID = "valid"
VERIFICATION_SKIPPED = "skipped"
VERIFICATION_MISMATCH = "mismatch"
VERIFICATION_UNREADABLE = "unreadable"  # secret stored but could not be opened


def compute_airtable_mac(secret: bytes, body: bytes) -> str:
    """Header value Airtable would send for *body* signed with *secret*."""
    digest = hmac.new(secret, body, hashlib.sha256).hexdigest()
    return f"{MAC_PREFIX}{digest}"


def validate_airtable_mac(secret: bytes, signature: str, body: bytes) -> bool:
    """
    Constant-time comparison of the claimed header value against the expected MAC.
    The comparison covers the algorithm prefix too, so any altered byte is rejected.
    """
    if not secret or not signature:
        return False

    expected = compute_airtable_mac(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def check_ping_signature(
    secret: Optional[bytes],
    signature: Optional[str],
    body: bytes,
) -> str:
    """
    Classify an inbound ping as valid, skipped or mismatch.

    Soft enforcement: a registration without a stored secret, or a request without the
    MAC header, skips verification and is treated as passing.
    """
    if not secret or not signature:
        logger.warning(
            "Airtable ping accepted without MAC verification (secret=%s header=%s)",
            "present" if secret else "missing",
            "present" if signature else "missing",
        )
        return VERIFICATION_SKIPPED

    if validate_airtable_mac(secret, signature, body):
        return VERIFICATION_VALID
    return VERIFICATION_MISMATCH


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for the ping audit trail."""
    return hashlib.sha256(body).hexdigest()

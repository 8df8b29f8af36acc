"""
Signature Service for Signed Public API Requests

Implements the HMAC-SHA256 request signature used by storefront clients.

Canonical payload (newline separated, body appended verbatim):
    METHOD
    PATH
    timestamp
    nonce
    raw body
"""
import hmac
import hashlib
from typing import Union


def build_canonical_payload(
    method: str,
    path: str,
    timestamp: str,
    nonce: str,
    body: Union[bytes, str]
) -> bytes:
    """
    Create the canonical byte string a client signs.

    The method is upper-cased; path, timestamp and nonce are used exactly as
    sent so the server reproduces the client's bytes.
    """
    if isinstance(body, str):
        body = body.encode('utf-8')
    head = "\n".join([method.upper(), path, timestamp, nonce])
    return head.encode('utf-8') + b"\n" + body


def compute_signature(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 of payload, returned as lowercase hex."""
    return hmac.new(
        secret.encode('utf-8'),
        payload,
        hashlib.sha256
    ).hexdigest()


def verify_signature(secret: str, payload: bytes, provided_signature: str) -> bool:
    """
    Verify a client signature using constant-time comparison.

    Args:
        secret: HMAC secret of the matched API key
        payload: Canonical payload from build_canonical_payload
        provided_signature: Hex signature from the x-signature header

    Returns:
        True if signature valid, False otherwise
    """
    expected = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).digest()

    try:
        provided = bytes.fromhex(provided_signature.strip().lower())
    except ValueError:
        # Not hex; still run a comparison so the rejection path does the same work
        hmac.compare_digest(expected, bytes(len(expected)))
        return False

    return hmac.compare_digest(expected, provided)


def digest_api_key(api_key: str) -> bytes:
    """SHA-256 digest of an API key, used for fixed-length constant-time lookups."""
    return hashlib.sha256(api_key.encode('utf-8')).digest()

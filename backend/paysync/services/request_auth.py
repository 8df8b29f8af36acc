"""
Request Authenticator for Public Payment Endpoints

Admission decision for signed storefront requests. Checks run in order and
the first failure wins:

1. x-api-key, x-timestamp, x-nonce and x-signature all present
2. timestamp is ISO-8601 and within the freshness window of now
3. API key matches a configured key (SHA-256 digests, constant-time)
4. (key label, nonce) not seen within the window (409 on replay)
5. HMAC-SHA256 signature over the canonical payload matches (constant-time)

On success the nonce is recorded and the matched key record is returned.
"""
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Mapping, Optional

from ..exceptions import AuthenticationError, KeysNotConfiguredError, ReplayError
from ..models.api_keys import ApiKeyRecord
from .nonce_ledger import NonceLedger, utc_now
from .signature_service import build_canonical_payload, digest_api_key, verify_signature

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
TIMESTAMP_HEADER = "x-timestamp"
NONCE_HEADER = "x-nonce"
SIGNATURE_HEADER = "x-signature"

DEFAULT_KEY_LABEL = "default"


# ============================================================================
# Key Registry
# ============================================================================

def parse_api_keys(raw: str) -> List[ApiKeyRecord]:
    """
    Parse PUBLIC_API_KEYS into key records.

    Format: comma separated "label:key[:secret]" entries. A bare "key" gets
    the default label; a missing secret means the key itself signs requests.

    Raises:
        ValueError: An entry has an empty key
    """
    records = []
    if not raw:
        return records

    for entry in (part.strip() for part in raw.split(",")):
        if not entry:
            continue

        parts = entry.split(":", 2)
        if len(parts) == 1:
            label, key, secret = DEFAULT_KEY_LABEL, parts[0], ""
        elif len(parts) == 2:
            label, key, secret = parts[0], parts[1], ""
        else:
            label, key, secret = parts

        key = key.strip()
        if not key:
            raise ValueError("PUBLIC_API_KEYS contains an empty key entry")

        records.append(ApiKeyRecord(
            label=label.strip() or DEFAULT_KEY_LABEL,
            key=key,
            secret=secret.strip() or key,
            key_digest=digest_api_key(key)
        ))

    return records


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ============================================================================
# Authenticator
# ============================================================================

class RequestAuthenticator:
    """
    Composes the key registry, the timestamp window and the nonce ledger.

    authenticate() does not await between the replay check and recording the
    nonce, so two identical requests cannot both be admitted by one process.
    """

    def __init__(
        self,
        keys: List[ApiKeyRecord],
        window: timedelta = timedelta(minutes=5),
        ledger: Optional[NonceLedger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        allow_insecure: bool = False
    ):
        self.keys = list(keys)
        self.window = window
        self._clock = clock or utc_now
        self.ledger = ledger or NonceLedger(window, clock=self._clock)
        self.allow_insecure = allow_insecure

        if allow_insecure:
            logger.warning("ALLOW_INSECURE_PUBLIC_API is enabled; public endpoints are NOT authenticated")
        elif not self.keys:
            logger.warning("PUBLIC_API_KEYS not configured; public API endpoints will reject requests")
        else:
            logger.info(f"Loaded {len(self.keys)} public API key(s): {', '.join(k.label for k in self.keys)}")

    @classmethod
    def from_settings(cls, settings) -> "RequestAuthenticator":
        """Build from application settings."""
        return cls(
            keys=parse_api_keys(settings.public_api_keys),
            window=timedelta(seconds=settings.public_api_timestamp_window_seconds),
            allow_insecure=settings.allow_insecure_public_api
        )

    @property
    def configured(self) -> bool:
        return bool(self.keys)

    def authenticate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes
    ) -> Optional[ApiKeyRecord]:
        """
        Admit or reject a signed request.

        Args:
            method: HTTP method
            path: Request path exactly as the client signed it
            headers: Request headers (lowercase lookup)
            body: Raw request body

        Returns:
            Matched ApiKeyRecord, or None when insecure mode bypasses the gate

        Raises:
            KeysNotConfiguredError: No keys configured (503)
            AuthenticationError: Missing/stale credentials, unknown key, bad signature (401)
            ReplayError: Nonce already used for this key (409)
        """
        if self.allow_insecure:
            return None

        if not self.keys:
            raise KeysNotConfiguredError()

        api_key = headers.get(API_KEY_HEADER)
        timestamp = headers.get(TIMESTAMP_HEADER)
        nonce = headers.get(NONCE_HEADER)
        signature = headers.get(SIGNATURE_HEADER)

        if not api_key or not timestamp or not nonce or not signature:
            raise AuthenticationError("missing_credentials", "Missing API authentication headers")

        sent_at = parse_timestamp(timestamp)
        if sent_at is None:
            raise AuthenticationError("stale_or_future_timestamp", "Invalid timestamp format")

        if abs(self._clock() - sent_at) > self.window:
            raise AuthenticationError(
                "stale_or_future_timestamp",
                "Request timestamp outside of allowed window"
            )

        record = self._find_key(api_key)
        if record is None:
            raise AuthenticationError("unknown_key", "Invalid API key")

        if self.ledger.has(record.label, nonce):
            logger.warning(f"Replay detected for key '{record.label}'")
            raise ReplayError()

        payload = build_canonical_payload(method, path, timestamp, nonce, body)
        if not verify_signature(record.secret, payload, signature):
            raise AuthenticationError("signature_mismatch", "Invalid API signature")

        self.ledger.mark(record.label, nonce)
        return record

    def _find_key(self, api_key: str) -> Optional[ApiKeyRecord]:
        # Compare against every key so timing does not reveal which one matched
        candidate = digest_api_key(api_key)
        match = None
        for record in self.keys:
            if hmac.compare_digest(candidate, record.key_digest) and match is None:
                match = record
        return match

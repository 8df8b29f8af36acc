"""
PaySync Exception Hierarchy

Every domain error carries a stable error code and the HTTP status the API
layer renders it with. The FastAPI handler in main.py turns any PaySyncError
into {"error_code", "message", "details"}.
"""
from typing import Optional, Dict, Any


class PaySyncError(Exception):
    """
    Base exception for all PaySync errors.

    Subclasses fix error_code and status_code; details carry structured
    context (never secrets) for the response body.
    """

    status_code: int = 400

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API error response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Public API authentication
# ============================================================================

class AuthenticationError(PaySyncError):
    """
    Signed request rejected.

    Examples:
    - Missing x-api-key / x-timestamp / x-nonce / x-signature header
    - Timestamp outside the freshness window
    - Unknown API key
    - HMAC signature mismatch
    """

    status_code = 401

    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(f"auth:{reason}", message, {"reason": reason, **(details or {})})


class ReplayError(PaySyncError):
    """Nonce already used by this key within the freshness window."""

    status_code = 409

    def __init__(self, message: str = "Replay detected for nonce", details: Optional[Dict[str, Any]] = None):
        super().__init__("auth:replay_detected", message, details)


class KeysNotConfiguredError(PaySyncError):
    """No public API keys configured; the signed endpoints are unavailable."""

    status_code = 503

    def __init__(self, message: str = "Public API keys are not configured"):
        super().__init__("auth:not_configured", message)


class AdminAuthorizationError(PaySyncError):
    """
    Admin route rejected.

    401 for a missing/invalid bearer token or unknown user, 403 when the
    user is known but lacks the admin role.
    """

    def __init__(self, message: str, status_code: int = 401):
        code = "admin:forbidden" if status_code == 403 else "admin:unauthorized"
        super().__init__(code, message, status_code=status_code)


# ============================================================================
# Gateway
# ============================================================================

class GatewaySignatureError(PaySyncError):
    """Webhook payload failed the gateway's own signature verification."""

    status_code = 400

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__("webhook:signature_invalid", message)


class GatewayError(PaySyncError):
    """
    Gateway call failed.

    Examples:
    - Network error or timeout talking to Stripe
    - Stripe rejected the request (unknown payment intent, auth failure)
    """

    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, not_found: bool = False):
        self.not_found = not_found
        super().__init__("gateway:error", message, details)


class ReconciliationError(PaySyncError):
    """
    Gateway unreachable or returned something unusable during a sweep.

    Recovered inside the sweeper: logged, counted as failed, and the order's
    sync bookkeeping still advances.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("reconciliation:failed", message, details, status_code=502)


class SweepInProgressError(PaySyncError):
    """A reconciliation sweep is already running in this process."""

    status_code = 409

    def __init__(self, message: str = "A reconciliation sweep is already in progress"):
        super().__init__("reconciliation:in_progress", message)


# ============================================================================
# Orders
# ============================================================================

class NotFoundError(PaySyncError):
    """No order (or gateway record) exists for the given reference."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("order:not_found", message, details)


class ProductNotFoundError(NotFoundError):
    """Referenced product does not exist."""

    def __init__(self, product_id: int):
        super().__init__("Product not found", {"product_id": product_id})
        self.error_code = "product:not_found"


class PendingError(PaySyncError):
    """
    Order not confirmed yet.

    202 while the order is provisional or the gateway reports success but
    no row exists yet; 400 when the gateway reports the payment never
    completed.
    """

    def __init__(self, message: str, gateway_status: str, status_code: int = 202):
        super().__init__(
            "order:pending",
            message,
            {"status": gateway_status},
            status_code=status_code
        )

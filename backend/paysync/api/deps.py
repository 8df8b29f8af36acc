"""
FastAPI Dependencies

Service lookup plus the two authentication gates:
- require_public_api_key: signed-request check for the storefront endpoints
- require_admin: bearer token check for the admin endpoints
"""
import logging
from typing import Optional

from fastapi import Depends, Request

from ..container import ServiceContainer
from ..exceptions import AdminAuthorizationError
from ..models.api_keys import ApiKeyRecord
from ..services.identity import (
    IdentityUser,
    InvalidTokenError,
    UnknownUserError,
    extract_bearer_token
)

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """Service container attached to the app at startup."""
    return request.app.state.services


async def require_public_api_key(
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> Optional[ApiKeyRecord]:
    """
    Admit a signed storefront request.

    The raw body is part of the signature, so it is read here before the
    route parses it (Starlette caches it for the route).
    """
    body = await request.body()
    record = services.authenticator.authenticate(
        request.method,
        request.url.path,
        request.headers,
        body
    )
    request.state.api_key_label = record.label if record else None
    return record


async def require_admin(
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> IdentityUser:
    """
    Resolve the bearer token to an admin user.

    Raises:
        AdminAuthorizationError: 401 missing/invalid token or unknown user, 403 not an admin
    """
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise AdminAuthorizationError("Missing or invalid authorization header")

    try:
        subject = await services.identity.verify_token(token)
    except InvalidTokenError as e:
        logger.warning(f"Admin token rejected: {e}")
        raise AdminAuthorizationError("Invalid token")

    try:
        user = await services.identity.get_user(subject)
    except UnknownUserError:
        raise AdminAuthorizationError("User not found")

    if not user.is_admin:
        logger.warning(f"Non-admin subject {subject} attempted admin access")
        raise AdminAuthorizationError("Admin access required", status_code=403)

    request.state.admin_subject = subject
    return user

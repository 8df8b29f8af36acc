"""
Identity Provider for Admin Routes

Admin endpoints accept a bearer token from the identity provider. The
provider exposes two operations: verify a token to a subject id, and fetch
the user behind a subject (for the role check).

JwtIdentityProvider verifies HS256 tokens with PyJWT; user roles come from the
ADMIN_SUBJECTS directory (listed subjects are admins, anyone else a member).
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class IdentityUser(BaseModel):
    subject: str
    role: Optional[str] = None
    is_admin_flag: bool = False

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == "admin" or self.is_admin_flag


class InvalidTokenError(Exception):
    """Token missing, malformed, expired or signed with another key."""


class UnknownUserError(Exception):
    """Token subject does not resolve to a user."""


class IdentityProvider(ABC):
    """Interface to the external identity provider."""

    @abstractmethod
    async def verify_token(self, token: str) -> str:
        """Verify a bearer token and return its subject id."""

    @abstractmethod
    async def get_user(self, subject: str) -> IdentityUser:
        """Fetch the user for a subject id."""


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """Return the token from 'Bearer <token>', or None."""
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token = auth_header[len(BEARER_PREFIX):].strip()
    return token or None


class JwtIdentityProvider(IdentityProvider):
    """HS256 JWT identity provider."""

    def __init__(
        self,
        secret: str,
        audience: Optional[str] = None,
        leeway_seconds: int = 10,
        admin_subjects: Optional[set] = None
    ):
        self.secret = secret
        self.audience = audience
        self.leeway_seconds = leeway_seconds
        self.admin_subjects = admin_subjects or set()

        if not secret:
            logger.warning("ADMIN_JWT_SECRET not configured; admin endpoints will reject every token")

    @classmethod
    def from_settings(cls, settings) -> "JwtIdentityProvider":
        subjects = {s.strip() for s in settings.admin_subjects.split(",") if s.strip()}
        return cls(
            secret=settings.admin_jwt_secret,
            audience=settings.admin_jwt_audience,
            leeway_seconds=settings.admin_jwt_leeway_seconds,
            admin_subjects=subjects
        )

    async def verify_token(self, token: str) -> str:
        if not self.secret:
            raise InvalidTokenError("Identity provider not configured")

        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                leeway=self.leeway_seconds,
                options={"verify_aud": self.audience is not None, "require": ["sub", "exp"]}
            )
        except jwt.ExpiredSignatureError:
            raise InvalidTokenError("Token expired")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        subject = claims.get("sub")
        if not subject or not isinstance(subject, str):
            raise InvalidTokenError("Invalid token payload")
        return subject

    async def get_user(self, subject: str) -> IdentityUser:
        if not subject:
            raise UnknownUserError(subject)
        role = "admin" if subject in self.admin_subjects else "member"
        return IdentityUser(subject=subject, role=role)

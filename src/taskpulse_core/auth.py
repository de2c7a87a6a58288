"""Bearer-token verification and role normalization.

Tokens are issued elsewhere; this module only verifies them. A token is
looked up by its SHA-256 hash and resolves to the acting user's id and role.
"""
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import AuthenticationError, ValidationError
from .models import AccessToken, PRIVILEGED_ROLES, Role, User, utcnow

logger = logging.getLogger("taskpulse-core.auth")

# Every spelling seen in the wild, keyed by lower-cased, underscore-joined text
_ROLE_ALIASES: dict[str, Role] = {
    "admin": Role.ADMIN,
    "administrator": Role.ADMIN,
    "super_admin": Role.ADMIN,
    "manager": Role.MANAGER,
    "pm": Role.MANAGER,
    "project_manager": Role.MANAGER,
    "developer": Role.DEVELOPER,
    "dev": Role.DEVELOPER,
    "engineer": Role.DEVELOPER,
    "qa": Role.QA,
    "tester": Role.QA,
    "quality_assurance": Role.QA,
}


def normalize_role(raw: Union[str, Role, None]) -> Role:
    """
    Map raw role text onto the closed Role enum.

    "pm", "Project Manager" and "PROJECT MANAGER" all become Role.MANAGER.

    Raises:
        ValidationError: If the role is empty or unknown
    """
    if isinstance(raw, Role):
        return raw
    key = re.sub(r"[\s-]+", "_", (raw or "").strip().lower())
    if key not in _ROLE_ALIASES:
        raise ValidationError(f"Unknown role: {raw!r}")
    return _ROLE_ALIASES[key]


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller as seen by the rest of the application."""

    id: UUID
    role: Role
    full_name: Optional[str] = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @classmethod
    def from_user(cls, user: User) -> "CurrentUser":
        return cls(id=user.id, role=normalize_role(user.role), full_name=user.full_name)


def authenticate_token(db: Session, token: Optional[str]) -> CurrentUser:
    """
    Resolve a bearer token to the calling user.

    Raises:
        AuthenticationError: If the token is missing, unknown, revoked,
            expired, or belongs to an inactive user
    """
    if not token:
        raise AuthenticationError("Authentication required")

    access_token = db.scalar(select(AccessToken).where(AccessToken.token_hash == hash_token(token)))
    if access_token is None or not access_token.is_active:
        logger.warning("Rejected unknown, revoked or expired access token")
        raise AuthenticationError("Invalid or expired token")

    user = access_token.user
    if user is None or not user.is_active:
        raise AuthenticationError("User is inactive")

    current = CurrentUser.from_user(user)
    access_token.last_used_at = utcnow()
    db.commit()
    return current

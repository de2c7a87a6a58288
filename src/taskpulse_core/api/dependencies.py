"""Request dependencies: database session, authenticated user, role gates."""
import logging
from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..auth import CurrentUser, authenticate_token
from ..database import get_db
from ..errors import AuthorizationError
from ..models import Role

logger = logging.getLogger("taskpulse-core.api.dependencies")

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    """Resolve the Authorization: Bearer token to the calling user."""
    token = credentials.credentials if credentials else None
    return authenticate_token(db, token)


def require_roles(*roles: Role) -> Callable[..., CurrentUser]:
    """Dependency factory admitting only the given roles."""
    allowed = frozenset(roles)

    def checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            logger.warning(f"User {current_user.id} ({current_user.role.value}) denied; needs {sorted(r.value for r in allowed)}")
            raise AuthorizationError("Insufficient role for this operation")
        return current_user

    return checker


require_privileged = require_roles(Role.ADMIN, Role.MANAGER)

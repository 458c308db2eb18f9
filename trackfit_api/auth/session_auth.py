"""Bearer token authentication.

FLOW:
1. The TrackFit auth service issues an HS256 JWT at login
   (claims: sub or id = user id, role = user | trainer | admin)
2. Clients call payment endpoints with Authorization: Bearer <jwt>
3. get_auth_context validates signature and expiry and returns AuthContext
4. require_roles(...) gates endpoints by role; admins pass every gate

SECURITY:
- Tokens are verified with the shared JWT_SECRET (HS256 only)
- Users may act only on their own userId; mismatches answer 404 so the
  existence of other users' resources is not disclosed
"""

import logging
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from trackfit_api.config.env import get_jwt_secret
from trackfit_api.context import user_id_var
from trackfit_api.db.models import ROLE_ADMIN, ROLE_TRAINER, ROLE_USER
from trackfit_api.errors import NotFound

logger = logging.getLogger(__name__)

bearer_security = HTTPBearer(auto_error=False, description="TrackFit session JWT")

JWT_ALGORITHMS = ["HS256"]


class AuthContext:
    """Authenticated caller."""

    def __init__(self, user_id: str, role: str = ROLE_USER, email: Optional[str] = None):
        self.user_id = user_id
        self.role = role
        self.email = email

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_auth_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_security),
) -> AuthContext:
    """Validate the bearer token and return the caller's context.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired;
            500 if JWT_SECRET is not configured
    """
    if not credentials:
        raise _unauthorized("Missing Authorization header. Please log in first.")

    try:
        secret = get_jwt_secret()
    except ValueError:
        logger.error("JWT_SECRET is not configured", extra={"event": "auth.misconfigured"})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )

    try:
        claims = jwt.decode(credentials.credentials, secret, algorithms=JWT_ALGORITHMS)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Session expired. Please log in again.")
    except jwt.InvalidTokenError:
        logger.warning("AUTH_INVALID_TOKEN", extra={"path": request.url.path})
        raise _unauthorized("Invalid session token. Please log in again.")

    user_id = claims.get("sub") or claims.get("id")
    if not user_id:
        raise _unauthorized("Invalid session token. Please log in again.")

    role = claims.get("role") or ROLE_USER
    user_id_var.set(str(user_id))
    return AuthContext(user_id=str(user_id), role=role, email=claims.get("email"))


def require_roles(*roles: str) -> Callable:
    """Dependency factory: caller must hold one of roles (admins always pass).

    Usage:
        @router.get("/all")
        async def list_all(auth: AuthContext = Depends(require_roles(ROLE_ADMIN))):
    """

    async def _check(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.is_admin or auth.role in roles:
            return auth
        logger.warning(
            "AUTH_ROLE_DENIED",
            extra={"role": auth.role, "required_roles": list(roles)},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this resource",
        )

    return _check


require_user = require_roles(ROLE_USER)
require_trainer = require_roles(ROLE_TRAINER)
require_admin = require_roles(ROLE_ADMIN)


def ensure_self_or_admin(auth: AuthContext, user_id: Optional[str]) -> None:
    """Users may only act on their own userId.

    A missing user_id is left for the workflow's own validation.

    Raises:
        NotFound: user_id belongs to someone else (stealth 404)
    """
    if not user_id or auth.is_admin:
        return
    if auth.user_id != user_id:
        logger.warning("AUTH_OWNERSHIP_DENIED")
        raise NotFound("User not found")

"""Auth dependencies -- extract and validate the JWT from the Authorization header."""

from uuid import UUID

import jwt as pyjwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from appsynth.auth import decode_token
from appsynth.repos.user_repo import get_user_by_id

_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Extract and validate the current user from the JWT bearer token.

    Returns the user dict from the database.
    Raises 401 if token is missing, invalid, expired, or user not found.
    """
    if credentials is None:
        raise _unauthorized("Missing authentication token")

    try:
        payload = decode_token(credentials.credentials)
    except pyjwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except pyjwt.PyJWTError:
        raise _unauthorized("Invalid authentication token")

    try:
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise _unauthorized("Invalid token payload")

    user = await get_user_by_id(user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Like :func:`get_current_user`, but 403 unless the user is an admin."""
    if not user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user

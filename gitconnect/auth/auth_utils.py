"""
Session credential handling - issue and validate the gateway's own bearer JWT
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

import jwt
from fastapi import Depends, Header, Request, status
from sqlalchemy.orm import Session

from gitconnect.config import Settings
from gitconnect.db.database import get_db
from gitconnect.db.user_store import UserStore
from gitconnect.errors import GatewayError
from gitconnect.models import User
from gitconnect.utils import utc_now

logger = logging.getLogger(__name__)

SESSION_ALGORITHM = "HS256"


def _unauthorized(code: str, message: str, details: Optional[str] = None) -> GatewayError:
    return GatewayError(
        status.HTTP_401_UNAUTHORIZED,
        code,
        message,
        details=details,
        headers={"WWW-Authenticate": "Bearer"},
    )


def server_misconfigured() -> GatewayError:
    return GatewayError(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "SERVER_MISCONFIGURED",
        "Authentication is temporarily unavailable",
    )


def create_session_token(settings: Settings, user_id: str) -> Tuple[str, datetime]:
    """Sign a session JWT for ``user_id``; returns the token and its expiry"""
    if not settings.jwt_secret:
        raise server_misconfigured()

    issued_at = utc_now()
    expires_at = issued_at + timedelta(days=settings.session_ttl_days)
    token = jwt.encode(
        {"user_id": user_id, "iat": issued_at, "exp": expires_at},
        settings.jwt_secret,
        algorithm=SESSION_ALGORITHM,
    )
    return token, expires_at


def decode_session_token(settings: Settings, token: str) -> str:
    """Validate a session JWT and return the user id it names"""
    if not settings.jwt_secret:
        raise server_misconfigured()

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[SESSION_ALGORITHM])
    except jwt.PyJWTError as e:
        raise _unauthorized("INVALID_TOKEN", "Token could not be verified", str(e))

    user_id = payload.get("user_id")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("INVALID_TOKEN", "Token payload is not valid")
    return user_id


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_user_store(request: Request, db: Session = Depends(get_db)) -> UserStore:
    return UserStore(db, request.app.state.token_cipher)


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    store: UserStore = Depends(get_user_store),
) -> User:
    """
    FastAPI dependency to get the current authenticated user

    Expected header format: "Bearer <session_token>"
    """
    token = extract_bearer_token(authorization)
    if not token:
        raise _unauthorized("NO_TOKEN", "Missing bearer token")

    user_id = decode_session_token(request.app.state.settings, token)

    user = store.get(user_id)
    if not user:
        logger.warning(f"Session token references unknown user {user_id}")
        raise _unauthorized("USER_NOT_FOUND", "User associated with token does not exist")

    request.state.user_id = user.id
    return user

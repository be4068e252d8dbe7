"""
Authentication Module

Verifies the short-lived HS256 token the tracker issues for one report
download. The token must name the same task and user as the request path
and be no older than the configured maximum age.
"""

import logging
import time
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


def get_token_secret() -> str:
    """Get the token secret from validated config."""
    if not settings.secret:
        raise ValueError("SECRET environment variable is required for authentication")
    return settings.secret


def verify_report_token(
    token: str,
    task_id: str,
    user_id: str,
    secret: str,
    max_age_ms: int,
    now_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify a report token against the requested task and user.

    Args:
        token: Encoded JWT
        task_id: Task id from the request path
        user_id: User id from the request path
        secret: HS256 secret
        max_age_ms: Maximum age of the payload timestamp
        now_ms: Current time in epoch milliseconds (defaults to now)

    Returns:
        The decoded payload

    Raises:
        HTTPException: 401 when the token is invalid, mismatched or expired
    """
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if str(payload.get("task_id")) != str(task_id) or str(payload.get("user_id")) != str(user_id):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    timestamp = payload.get("timestamp")
    if not isinstance(timestamp, (int, float)):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    if now_ms - timestamp > max_age_ms:
        raise HTTPException(status_code=401, detail="Token expired")

    return payload


async def verify_token(
    task_id: str,
    user_id: str,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> Dict[str, Any]:
    """
    FastAPI dependency guarding the generate endpoint.

    task_id and user_id are resolved from the path of the guarded route.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="No token provided")

    try:
        secret = get_token_secret()
    except ValueError:
        raise HTTPException(
            status_code=500,
            detail="Server authentication not configured"
        )

    return verify_report_token(
        credentials.credentials,
        task_id,
        user_id,
        secret,
        settings.token_max_age_ms,
    )

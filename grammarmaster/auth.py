"""
Bearer token helpers. Tokens carry the caller id in a 'userId' claim.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from .errors import AuthorizationError

logger = logging.getLogger(__name__)

USER_ID_CLAIM = "userId"


def create_access_token(user_id: str, secret: str, algorithm: str = "HS256", expire_days: int = 7) -> str:
    """Create a signed token for a user, valid for expire_days."""
    expire = datetime.now(timezone.utc) + timedelta(days=expire_days)
    payload = {USER_ID_CLAIM: str(user_id), "exp": expire}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> str:
    """
    Verify a token and return the caller id it carries.

    Raises:
        AuthorizationError: If the token is expired, tampered with or has no user id
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError as e:
        raise AuthorizationError("Token has expired") from e
    except jwt.PyJWTError as e:
        logger.debug(f"Rejected token: {e}")
        raise AuthorizationError("Invalid token") from e

    user_id = payload.get(USER_ID_CLAIM)
    if not user_id:
        raise AuthorizationError("Token carries no user id")
    return str(user_id)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an 'Authorization: Bearer <token>' header value.

    Raises:
        AuthorizationError: If the header is missing or uses another scheme
    """
    if not authorization:
        raise AuthorizationError("Access token required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthorizationError("Access token required")
    return token.strip()

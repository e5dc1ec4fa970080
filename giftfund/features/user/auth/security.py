# giftfund/features/user/auth/security.py

# This file contains the JWT helpers for the bearer tokens issued by the auth service.

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from ....config.settings import settings


SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Creates a new JWT access token.
    Token issuance belongs to the auth service; this mirror of it is used by
    local tooling and the test-suite to mint tokens with the shared secret.
    Args:
        data: The payload data to encode in the token (e.g., {"sub": user_id, "user_id": user_id, "role": "buyer"}).
        expires_delta: Optional timedelta for token expiration. Defaults to ACCESS_TOKEN_EXPIRE_MINUTES.
    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verifies a JWT token and returns the payload if valid.
    Returns None if the signature is invalid or the token has expired.
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

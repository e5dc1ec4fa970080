# giftfund/features/user/auth/dependencies.py

# This file contains FastAPI dependency functions for authentication.
# They turn the Authorization: Bearer header into a TokenData principal
# (user id + role); owner/admin decisions are made by the feature services.

import traceback
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .security import verify_token
from ....models.auth import TokenData


# --- OAuth2PasswordBearer setup ---
# The tokenUrl points at the auth service's login endpoint (documentation only).
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _decode_principal(token: str) -> Optional[TokenData]:
    payload = verify_token(token)
    if payload is None:
        print("Token verification failed (invalid signature or expired).")
        return None
    try:
        return TokenData(**payload)
    except Exception as e:
        print(f"Error validating token payload against TokenData model: {e}")
        traceback.print_exc()
        return None


async def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenData:
    """
    FastAPI dependency to get the current user from the JWT token in the Authorization header.

    Raises:
        HTTPException: 401 if the token is invalid, expired, or the payload is incorrect.
    """
    token_data = _decode_principal(token)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token_data


async def get_optional_user(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[TokenData]:
    """Like get_current_user, but anonymous callers (no header) get None. A bad token is still a 401."""
    if not token:
        return None
    return await get_current_user(token)

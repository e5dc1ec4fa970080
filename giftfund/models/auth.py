# giftfund/models/auth.py

# Pydantic model for the claims carried by the bearer token.
# Tokens are issued by the auth service; this backend only reads them.

from datetime import datetime

from pydantic import BaseModel, Field


class TokenData(BaseModel):
    """
    Pydantic model for the data expected within the JWT token payload.
    Includes standard JWT claims and explicit custom claims.
    """
    # Standard JWT 'sub' claim: Subject of the token. We'll store the user's ID here.
    sub: str = Field(..., description="Standard JWT subject claim (user ID as string)")

    # Custom claim for explicit user ID, for clarity in application code.
    user_id: str = Field(..., description="Custom claim for explicit user ID (as string)")

    # Standard JWT 'exp' claim: Expiration Time.
    exp: datetime = Field(..., description="Expiration time of the token (UTC)")

    # Custom claim: User's role, needed for owner/admin checks.
    role: str = Field(..., description="User's role (buyer, seller, admin)")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

# giftfund/models/invitation.py

# Request bodies for the invitation endpoints.
# The stored invitation itself is embedded in the event (see models/event.py).

from typing import List, Optional

from pydantic import BaseModel, Field


class InviteEntry(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


class InviteUsersRequest(BaseModel):
    invites: List[InviteEntry] = Field(default_factory=list)


class InvitationRespondRequest(BaseModel):
    response: str = Field(..., description="'accepted' or 'declined'")

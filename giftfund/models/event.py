# giftfund/models/event.py

# This file defines the Pydantic models for the 'events' collection:
# the stored Event document (with its embedded product lines and invitations)
# and the request bodies used to create and update events.

import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import PyObjectId


EVENT_TYPES = [
    "birthday", "wedding", "graduation", "babyShower",
    "houseWarming", "anniversary", "retirement", "engagement",
    "christening", "baptism", "communion", "confirmation",
    "funeral", "memorial", "celebration", "farewell",
    "thanksgiving", "holiday", "christmas", "newyear",
    "valentines", "mothers-day", "fathers-day", "easter",
    "charity", "fundraiser", "teambuilding", "reunion",
    "promotion", "achievement", "milestone", "recovery",
    "houseblessing", "business-launch", "opening", "other",
]

EVENT_STATUSES = ["pending", "active", "completed", "cancelled"]

EventStatus = Literal["pending", "active", "completed", "cancelled"]
Visibility = Literal["public", "private", "unlisted"]
ProductLineStatus = Literal["pending", "contributed", "purchased"]
InvitationStatus = Literal["pending", "accepted", "declined"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# --- Embedded documents ---
class EventProductLine(BaseModel):
    product: PyObjectId
    quantity: int = Field(1, ge=1)
    status: ProductLineStatus = "pending"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class Invitation(BaseModel):
    """One entry of Event.invited_users."""
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None
    status: InvitationStatus = "pending"
    invited_at: datetime.datetime = Field(default_factory=_utcnow)
    responded_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)


# --- Event Model ---
class Event(BaseModel):
    """
    Represents an event document in the MongoDB 'events' collection.
    current_amount is a cache of the completed contributions and is only
    ever written by re-aggregating them.
    """
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    creator: PyObjectId
    title: str
    description: str
    event_type: str
    custom_event_type: Optional[str] = None
    image: Optional[str] = None

    event_date: datetime.datetime
    end_date: datetime.datetime

    visibility: Visibility = "private"
    access_code: Optional[str] = None
    shareable_link: Optional[str] = None

    status: EventStatus = "pending"
    target_amount: float = Field(..., ge=0)
    current_amount: float = Field(0.0, ge=0)
    is_fully_funded: bool = False
    fully_funded_at: Optional[datetime.datetime] = None
    initial_contribution_made: bool = False
    initial_contributor: Optional[PyObjectId] = None

    products: List[EventProductLine] = Field(default_factory=list)
    contributions: List[PyObjectId] = Field(default_factory=list)
    invited_users: List[Invitation] = Field(default_factory=list)
    orders: List[PyObjectId] = Field(default_factory=list)

    completed_at: Optional[datetime.datetime] = None
    cancelled_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)


# --- Request Models ---
class EventProductLineIn(BaseModel):
    product: str = Field(..., description="Product id")
    quantity: int = Field(1, ge=1, description="Requested quantity (at least 1)")


class EventCreateRequest(BaseModel):
    """Body of POST /api/events."""
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    event_type: str
    custom_event_type: Optional[str] = None
    event_date: datetime.datetime
    end_date: datetime.datetime
    visibility: Visibility = "private"
    target_amount: Optional[float] = Field(default=None, ge=0, description="Computed from product prices when omitted")
    products: List[EventProductLineIn] = Field(default_factory=list)
    image: Optional[str] = None

    @field_validator("title", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Amina's 30th",
                "description": "Help me furnish the new flat!",
                "event_type": "birthday",
                "event_date": "2026-12-01T18:00:00Z",
                "end_date": "2026-12-15T18:00:00Z",
                "visibility": "private",
                "products": [{"product": "65f2a5b1b3727d9c4a7e1a0b", "quantity": 2}],
            }
        }
    )


class EventStatusUpdateRequest(BaseModel):
    status: str

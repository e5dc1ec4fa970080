# giftfund/models/contribution.py

# Pydantic models for the 'contributions' collection and its request bodies.

import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import PyObjectId


PAYMENT_METHODS = ["mpesa", "card", "paypal"]
PAYMENT_STATUSES = ["pending", "processing", "completed", "failed", "refunded"]

PaymentMethod = Literal["mpesa", "card", "paypal"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class Contribution(BaseModel):
    """
    Represents a contribution document in the MongoDB 'contributions' collection.
    Created 'pending'; only the payment confirmation path moves it on.
    """
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    event: PyObjectId
    contributor: PyObjectId
    amount: float = Field(..., gt=0)
    message: Optional[str] = None
    anonymous: bool = False

    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    # Method-specific detail blobs, only one is set.
    mpesa_details: Optional[Dict[str, Any]] = None
    card_details: Optional[Dict[str, Any]] = None
    paypal_details: Optional[Dict[str, Any]] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)


# --- Request Models ---
class ContributionCreateRequest(BaseModel):
    """Body of POST /api/contributions."""
    event_id: str
    amount: float = Field(..., gt=0, description="Amount to contribute, must be greater than 0")
    payment_method: PaymentMethod
    phone_number: Optional[str] = Field(default=None, description="Required for M-PESA, format +254XXXXXXXXX")
    message: Optional[str] = Field(default=None, max_length=500)
    anonymous: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event_id": "65f2a5b1b3727d9c4a7e1a0b",
                "amount": 1500,
                "payment_method": "mpesa",
                "phone_number": "+254712345678",
                "message": "Happy birthday!",
                "anonymous": False,
            }
        }
    )


class ContributionStatusUpdateRequest(BaseModel):
    """Body of PUT /api/contributions/{id}/status (payment confirmation / admin correction)."""
    payment_status: str
    transaction_id: Optional[str] = None
    payment_details: Optional[Dict[str, Any]] = None

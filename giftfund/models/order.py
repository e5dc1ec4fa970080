# giftfund/models/order.py

# Pydantic models for the 'orders' collection, the checkout request body
# and the order progress update body.

import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import PyObjectId


OrderProgress = Literal["pending", "processing", "preparing", "shipped", "delivered", "cancelled"]
ORDER_PROGRESS_STATES = ["pending", "processing", "preparing", "shipped", "delivered", "cancelled"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class ShippingDetails(BaseModel):
    name: str
    address: str
    phone: str
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: Optional[str] = None
    notes: str = ""

    @field_validator("name", "address", "phone")
    @classmethod
    def required_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class OrderLineItem(BaseModel):
    product: PyObjectId
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0) # Unit price snapshot at order creation
    total: float = Field(..., ge=0)
    status: OrderProgress = "pending"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class TimelineEntry(BaseModel):
    status: OrderProgress
    description: str
    timestamp: datetime.datetime = Field(default_factory=_utcnow)


class Order(BaseModel):
    """
    Represents an order document in the MongoDB 'orders' collection.
    Only the checkout orchestrator creates orders; total_amount is fixed at creation.
    """
    id: Optional[PyObjectId] = Field(alias="_id", default=None)

    order_number: str
    event: PyObjectId
    event_type: Optional[str] = None
    buyer: PyObjectId
    seller: PyObjectId
    products: List[OrderLineItem]
    total_amount: float = Field(..., ge=0)
    currency: str = "KES"

    order_status: str = "confirmed"
    order_progress: OrderProgress = "pending"
    timeline: List[TimelineEntry] = Field(default_factory=list)

    shipping_details: ShippingDetails
    payment_method: str = "already_paid"
    payment_status: str = "completed" # Funds were collected through contributions

    source: str = "event"
    source_event_id: PyObjectId
    notes: Optional[str] = None

    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)


# --- Request Models ---
class CheckoutRequest(BaseModel):
    """Body of POST /api/events/{id}/checkout."""
    shipping_details: ShippingDetails
    payment_method: str = "already_paid"


class OrderProgressUpdateRequest(BaseModel):
    progress: OrderProgress
    description: Optional[str] = Field(default=None, max_length=500)

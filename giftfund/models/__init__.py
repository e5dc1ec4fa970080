# giftfund/models/__init__.py

# This file makes the 'models' directory a Python package
# and is used to manage imports from this package.

from .auth import TokenData
from .contribution import Contribution, ContributionCreateRequest, ContributionStatusUpdateRequest
from .event import Event, EventCreateRequest, EventProductLine, EventStatusUpdateRequest, Invitation
from .invitation import InvitationRespondRequest, InviteEntry, InviteUsersRequest
from .order import CheckoutRequest, Order, OrderLineItem, OrderProgressUpdateRequest, ShippingDetails, TimelineEntry
from .product import Product

__all__ = [
    "TokenData",
    "Contribution",
    "ContributionCreateRequest",
    "ContributionStatusUpdateRequest",
    "Event",
    "EventCreateRequest",
    "EventProductLine",
    "EventStatusUpdateRequest",
    "Invitation",
    "InvitationRespondRequest",
    "InviteEntry",
    "InviteUsersRequest",
    "CheckoutRequest",
    "Order",
    "OrderLineItem",
    "OrderProgressUpdateRequest",
    "ShippingDetails",
    "TimelineEntry",
    "Product",
]

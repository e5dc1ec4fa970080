# giftfund/features/orders/service.py

# This file contains the business logic for orders after checkout:
# sellers move an order through its fulfilment progress, buyers follow it.
# total_amount is fixed at checkout and never written here.

from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from ..events import service as events_service
from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import get_orders_collection
from ...models.auth import TokenData
from ...models.order import ORDER_PROGRESS_STATES, TimelineEntry
from ...shared import notifications
from ...shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ...shared.notifications import NotificationPort, dispatch_notification
from ...shared.utils import oid, same_id, serialize_document, utc_now


# --- Order Progress Transitions ---
ORDER_PROGRESS_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"preparing", "cancelled"}),
    "preparing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}


async def load_order(order_id: Any) -> Dict[str, Any]:
    orders_collection = database.get_collection_or_raise(get_orders_collection)
    order = await database.find_one(orders_collection, {"_id": oid(order_id, "order ID")})
    if order is None:
        raise NotFoundError("Order not found")
    return order


def check_progress_transition(current: str, target: str) -> None:
    if target not in ORDER_PROGRESS_STATES:
        raise ValidationError(f'Invalid order progress "{target}"', reasons=[f"Progress must be one of: {', '.join(ORDER_PROGRESS_STATES)}"])
    if target not in ORDER_PROGRESS_TRANSITIONS.get(current, frozenset()):
        raise ValidationError(f'Cannot change order progress from "{current}" to "{target}"')


async def update_order_progress(
    order_id: str,
    requester: TokenData,
    progress: str,
    description: Optional[str] = None,
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """Moves an order one step along its fulfilment progress and records it in the timeline."""
    order = await load_order(order_id)
    if not requester.is_admin and not same_id(order.get("seller"), requester.user_id):
        raise AuthorizationError("Access denied. Only the seller of this order can update its progress.")

    current = order.get("order_progress", "pending")
    check_progress_transition(current, progress)

    now = utc_now()
    entry = TimelineEntry(status=progress, description=description or f"Order status changed to {progress}", timestamp=now)
    lines: List[Dict[str, Any]] = [{**line, "status": progress} for line in order.get("products", [])]
    update_fields: Dict[str, Any] = {"order_progress": progress, "products": lines, "updated_at": now}
    if progress == "delivered":
        update_fields["delivered_at"] = now
    elif progress == "cancelled":
        update_fields["cancelled_at"] = now

    orders_collection = database.get_collection_or_raise(get_orders_collection)
    updated = await database.find_one_and_update(
        orders_collection,
        {"_id": order["_id"], "order_progress": current},
        {"$set": update_fields, "$push": {"timeline": entry.model_dump()}},
    )
    if updated is None:
        raise ConflictError("Order progress was changed by another request. Reload the order and try again.")
    print(f"Order {order['_id']} progress changed from '{current}' to '{progress}' by user {requester.user_id}.")

    await dispatch_notification(
        notifier,
        order.get("buyer"),
        notifications.ORDER_PROGRESS,
        {"order_id": str(order["_id"]), "order_number": order.get("order_number"), "progress": progress},
        settings.NOTIFICATION_TIMEOUT_SECONDS,
    )
    return serialize_document(updated)


async def get_order(order_id: str, requester: TokenData) -> Dict[str, Any]:
    order = await load_order(order_id)
    if not (
        requester.is_admin
        or same_id(order.get("buyer"), requester.user_id)
        or same_id(order.get("seller"), requester.user_id)
    ):
        raise AuthorizationError("Not authorized to view this order")
    return serialize_document(order)


async def list_event_orders(event_id: str, requester: TokenData) -> List[Dict[str, Any]]:
    """Orders created by an event checkout, for the event owner or an admin."""
    event = await events_service.load_event(event_id)
    if not events_service.is_owner_or_admin(event, requester):
        raise AuthorizationError("Access denied. You can only view orders of your own events.")
    orders_collection = database.get_collection_or_raise(get_orders_collection)
    orders = await database.find_many(orders_collection, {"source_event_id": event["_id"]}, {"sort": [("created_at", ASCENDING)]})
    return [serialize_document(order) for order in orders]

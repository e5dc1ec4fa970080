# giftfund/features/checkout/orchestration.py

# This file orchestrates an event checkout: it turns the funded wishlist of an
# event into one order per seller, takes the ordered quantities out of stock
# and completes the event.
#
# All writes happen inside a CheckoutUnitOfWork. With MONGO_USE_TRANSACTIONS the
# unit is a MongoDB multi-document transaction; otherwise every write registers
# a compensating action that is replayed (in reverse) if a later step fails.

import asyncio
import datetime
import traceback
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo.client_session import ClientSession
from pymongo.errors import PyMongoError

from .eligibility import validate_for_checkout
from ..events import service as events_service
from ..events import state_machine
from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import (
    get_events_collection,
    get_orders_collection,
    get_products_collection,
    get_users_collection,
)
from ...models.auth import TokenData
from ...models.order import Order, OrderLineItem, ShippingDetails, TimelineEntry
from ...shared import notifications
from ...shared.errors import AuthorizationError, ConflictError, ValidationError
from ...shared.notifications import NotificationPort, dispatch_notification
from ...shared.utils import generate_order_number, serialize_document, utc_now


# --- Unit of Work ---
class CheckoutUnitOfWork:
    """
    Groups the checkout writes so that they either all stay or all go.
    Use as `async with CheckoutUnitOfWork(...) as uow:` and pass `uow.session`
    to every database call.
    """

    def __init__(self, use_transaction: bool = False):
        self.use_transaction = use_transaction
        self.session: Optional[ClientSession] = None
        self._compensations: List[Callable[[], Awaitable[Any]]] = []

    async def __aenter__(self) -> "CheckoutUnitOfWork":
        if self.use_transaction:
            self.session = await database.start_session()
            await asyncio.to_thread(self.session.start_transaction)
        return self

    def on_rollback(self, action: Callable[[], Awaitable[Any]]) -> None:
        """Registers the inverse of a write that just succeeded. Ignored in transaction mode."""
        if self.session is None:
            self._compensations.append(action)

    async def _compensate(self) -> None:
        # Keep going on failure; every remaining inverse still has to be attempted.
        for action in reversed(self._compensations):
            try:
                await action()
            except Exception as e:
                print(f"Error: Checkout rollback step failed: {e}")
                traceback.print_exc()
        self._compensations.clear()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            if exc_type is None:
                if self.session is not None:
                    await asyncio.to_thread(self.session.commit_transaction)
                return False
            if self.session is not None:
                print("Aborting checkout transaction.")
                await asyncio.to_thread(self.session.abort_transaction)
            else:
                print(f"Rolling back checkout ({len(self._compensations)} compensating writes).")
                await self._compensate()
            return False
        finally:
            if self.session is not None:
                await asyncio.to_thread(self.session.end_session)


# --- Helpers ---
async def _load_products(event: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    products_collection = database.get_collection_or_raise(get_products_collection)
    product_ids = [line["product"] for line in event.get("products", [])]
    return await database.find_by_ids(products_collection, product_ids)


def _group_lines_by_seller(event: Dict[str, Any], products_by_id: Dict[str, Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Product lines grouped per seller, sellers in order of first appearance."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for line in event.get("products", []):
        product = products_by_id[str(line["product"])]
        if product.get("seller") is None:
            raise ValidationError(f'Product "{product.get("name")}" has no seller and cannot be ordered')
        grouped.setdefault(str(product["seller"]), []).append(line)
    return grouped


async def check_checkout_eligibility(event_id: str, requester: TokenData) -> Dict[str, Any]:
    """Eligibility report for the owner (or an admin)."""
    event = await events_service.load_event(event_id)
    if not events_service.is_owner_or_admin(event, requester):
        raise AuthorizationError("Access denied. Only the event creator can check checkout eligibility.")
    products_by_id = await _load_products(event)
    return validate_for_checkout(event, products_by_id, utc_now())


async def _claim_event(event: Dict[str, Any], claim_token: str, now: datetime.datetime, session: Optional[ClientSession]) -> Dict[str, Any]:
    """Marks the event as being checked out. Only one live claim can exist per event."""
    events_collection = database.get_collection_or_raise(get_events_collection)
    stale_before = now - datetime.timedelta(seconds=settings.CHECKOUT_LOCK_TTL_SECONDS)
    claimed = await database.find_one_and_update(
        events_collection,
        {
            "_id": event["_id"],
            "status": state_machine.ACTIVE,
            "$or": [{"checkout_lock": None}, {"checkout_started_at": {"$lt": stale_before}}],
        },
        {"$set": {"checkout_lock": claim_token, "checkout_started_at": now}},
        session=session,
    )
    if claimed is None:
        current = await database.find_one(events_collection, {"_id": event["_id"]}, session=session)
        if current is not None and current.get("status") == state_machine.COMPLETED:
            raise ConflictError("This event has already been checked out")
        raise ConflictError("A checkout for this event is already in progress")
    return claimed


async def _release_claim(event_id: ObjectId, claim_token: str) -> None:
    events_collection = database.get_collection_or_raise(get_events_collection)
    await database.update_one(
        events_collection,
        {"_id": event_id, "checkout_lock": claim_token},
        {"$unset": {"checkout_lock": "", "checkout_started_at": ""}},
    )


async def _delete_order(order_id: ObjectId) -> None:
    orders_collection = database.get_collection_or_raise(get_orders_collection)
    await database.delete_one(orders_collection, {"_id": order_id})


async def _restore_stock(product_id: ObjectId, quantity: int) -> None:
    products_collection = database.get_collection_or_raise(get_products_collection)
    await database.update_one(products_collection, {"_id": product_id}, {"$inc": {"stock": quantity}})


async def _decrement_stock(product: Dict[str, Any], quantity: int, uow: CheckoutUnitOfWork) -> None:
    """Takes `quantity` out of stock only if that much is left."""
    products_collection = database.get_collection_or_raise(get_products_collection)
    result = await database.update_one(
        products_collection,
        {"_id": product["_id"], "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
        session=uow.session,
    )
    if result.matched_count == 0:
        raise ConflictError(
            f'Product "{product.get("name")}" no longer has {quantity} in stock',
            reasons=["Some products are no longer available in requested quantities"],
        )
    uow.on_rollback(lambda: _restore_stock(product["_id"], quantity))


async def _create_seller_order(
    event: Dict[str, Any],
    seller_id: str,
    lines: List[Dict[str, Any]],
    products_by_id: Dict[str, Dict[str, Any]],
    shipping_details: ShippingDetails,
    payment_method: str,
    now: datetime.datetime,
    uow: CheckoutUnitOfWork,
) -> Dict[str, Any]:
    """Inserts one order for a seller with the current prices as snapshot, then takes the stock."""
    items: List[OrderLineItem] = []
    for line in lines:
        product = products_by_id[str(line["product"])]
        price = float(product.get("price") or 0)
        quantity = int(line.get("quantity") or 1)
        items.append(OrderLineItem(
            product=product["_id"],
            name=product.get("name"),
            quantity=quantity,
            price=price,
            total=round(price * quantity, 2),
        ))

    order = Order(
        order_number=generate_order_number(),
        event=event["_id"],
        event_type=event.get("event_type"),
        buyer=event["creator"],
        seller=ObjectId(seller_id),
        products=items,
        total_amount=round(sum(item.total for item in items), 2),
        currency=settings.ORDER_CURRENCY,
        timeline=[TimelineEntry(status="pending", description="Order created from event checkout", timestamp=now)],
        shipping_details=shipping_details,
        payment_method=payment_method,
        source_event_id=event["_id"],
        notes=f"Order created from event: {event.get('title')}",
        created_at=now,
        updated_at=now,
    )
    document = order.model_dump(by_alias=True, exclude={"id"})
    orders_collection = database.get_collection_or_raise(get_orders_collection)
    document["_id"] = await database.insert_one(orders_collection, document, session=uow.session)
    order_id = document["_id"]
    uow.on_rollback(lambda: _delete_order(order_id))

    for item in items:
        await _decrement_stock(products_by_id[str(item.product)], item.quantity, uow)
    return document


async def _finalize_event(
    event: Dict[str, Any],
    claim_token: str,
    order_ids: List[ObjectId],
    shipping_details: ShippingDetails,
    now: datetime.datetime,
    session: Optional[ClientSession],
) -> Dict[str, Any]:
    events_collection = database.get_collection_or_raise(get_events_collection)
    purchased_lines = [{**line, "status": "purchased"} for line in event.get("products", [])]
    fields = state_machine.transition_fields(state_machine.COMPLETED, now)
    fields.update({
        "orders": order_ids,
        "shipping_details": shipping_details.model_dump(),
        "products": purchased_lines,
    })
    finalized = await database.find_one_and_update(
        events_collection,
        {"_id": event["_id"], "checkout_lock": claim_token},
        {"$set": fields, "$unset": {"checkout_lock": "", "checkout_started_at": ""}},
        session=session,
    )
    if finalized is None:
        raise ConflictError("Checkout claim on the event was lost. Please retry.")
    return finalized


async def _present_orders(orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Orders with seller and product summaries attached."""
    seller_ids = list({order["seller"] for order in orders})
    users_collection = get_users_collection()
    sellers_by_id = await database.find_by_ids(users_collection, seller_ids) if users_collection is not None else {}

    output = []
    for order in orders:
        data = serialize_document(order)
        seller = sellers_by_id.get(str(order["seller"]))
        data["seller_summary"] = {
            "_id": str(order["seller"]),
            "business_name": seller.get("business_name") if seller else None,
            "name": seller.get("name") if seller else None,
            "email": seller.get("email") if seller else None,
        }
        data["product_summaries"] = [
            {"product": str(item["product"]), "name": item.get("name"), "quantity": item.get("quantity")}
            for item in order.get("products", [])
        ]
        output.append(data)
    return output


# --- Checkout ---
async def complete_event_checkout(
    event_id: str,
    requester: TokenData,
    shipping_details: ShippingDetails,
    payment_method: str = "already_paid",
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """
    Checks out a funded event: one order per seller, stock taken, event completed.
    Nothing is left behind if any step fails.
    """
    event = await events_service.load_event(event_id)
    if not events_service.is_owner_or_admin(event, requester):
        raise AuthorizationError("Access denied. Only the event creator can checkout the event.")
    if event.get("status") == state_machine.COMPLETED:
        raise ConflictError("This event has already been checked out")

    now = utc_now()
    products_by_id = await _load_products(event)
    validation = validate_for_checkout(event, products_by_id, now)
    if not validation["is_eligible"]:
        raise ValidationError("Event is not eligible for checkout", reasons=validation["reasons"], extra={"details": validation})

    if not shipping_details.country:
        shipping_details = shipping_details.model_copy(update={"country": settings.DEFAULT_COUNTRY})
    lines_by_seller = _group_lines_by_seller(event, products_by_id)

    claim_token = str(ObjectId())
    created_orders: List[Dict[str, Any]] = []
    print(f"Starting checkout of event {event['_id']} for {len(lines_by_seller)} sellers (transactions: {settings.MONGO_USE_TRANSACTIONS}).")

    try:
        async with CheckoutUnitOfWork(settings.MONGO_USE_TRANSACTIONS) as uow:
            claimed = await _claim_event(event, claim_token, now, uow.session)
            uow.on_rollback(lambda: _release_claim(event["_id"], claim_token))
            state_machine.check_transition(claimed, state_machine.COMPLETED, now)

            for seller_id, lines in lines_by_seller.items():
                created_orders.append(await _create_seller_order(
                    claimed, seller_id, lines, products_by_id, shipping_details, payment_method, now, uow,
                ))

            finalized = await _finalize_event(claimed, claim_token, [order["_id"] for order in created_orders], shipping_details, now, uow.session)
    except PyMongoError as e:
        if e.has_error_label("TransientTransactionError"):
            print(f"Warning: Checkout transaction conflict for event {event['_id']}: {e}")
            raise ConflictError("Another checkout changed this event or its products. Please retry.")
        raise

    print(f"Checkout of event {event['_id']} completed with {len(created_orders)} orders.")

    summary = {
        "total_orders": len(created_orders),
        "total_amount": round(sum(order["total_amount"] for order in created_orders), 2),
        "unique_sellers": len(lines_by_seller),
    }

    timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
    for order in created_orders:
        await dispatch_notification(
            notifier,
            order["seller"],
            notifications.NEW_ORDER,
            {"order_id": str(order["_id"]), "order_number": order["order_number"], "event_id": str(event["_id"]), "total_amount": order["total_amount"]},
            timeout,
        )
    await dispatch_notification(
        notifier,
        event["creator"],
        notifications.EVENT_CHECKOUT_COMPLETED,
        {"event_id": str(event["_id"]), "title": event.get("title"), **summary},
        timeout,
    )

    return {
        "event": {
            "_id": str(finalized["_id"]),
            "title": finalized.get("title"),
            "status": finalized.get("status"),
            "completed_at": finalized.get("completed_at"),
        },
        "orders": await _present_orders(created_orders),
        "summary": summary,
    }

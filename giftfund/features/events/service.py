# giftfund/features/events/service.py

# This file contains the business logic for events: creation, access rules,
# listings, status changes (through the state machine) and deletion.

import re
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from . import state_machine
from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import (
    get_contributions_collection,
    get_events_collection,
    get_products_collection,
)
from ...models.auth import TokenData
from ...models.event import EVENT_TYPES, Event, EventCreateRequest, EventProductLine
from ...shared import notifications
from ...shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ...shared.notifications import NotificationPort, dispatch_notification
from ...shared.utils import (
    funding_progress,
    generate_access_code,
    generate_shareable_link,
    oid,
    page_window,
    same_id,
    serialize_document,
    to_naive_utc,
    utc_now,
)


# Contribution statuses that keep an event from being hard-deleted.
_LIVE_CONTRIBUTION_STATUSES = ["pending", "processing", "completed"]

_SORTABLE_FIELDS = {"created_at", "event_date", "end_date", "current_amount", "target_amount", "title"}


# --- Helpers ---
def is_owner_or_admin(event: Dict[str, Any], requester: Optional[TokenData]) -> bool:
    if requester is None:
        return False
    return requester.is_admin or same_id(event.get("creator"), requester.user_id)


def require_owner_or_admin(event: Dict[str, Any], requester: TokenData, action: str = "manage") -> None:
    if not is_owner_or_admin(event, requester):
        raise AuthorizationError(f"Access denied. You can only {action} your own events.")


async def load_event(event_id: Any, session=None) -> Dict[str, Any]:
    """Fetches the raw event document or raises NotFoundError."""
    events_collection = database.get_collection_or_raise(get_events_collection)
    event = await database.find_one(events_collection, {"_id": oid(event_id, "event ID")}, session=session)
    if event is None:
        raise NotFoundError("Event not found")
    return event


def progress_percentage(event: Dict[str, Any]) -> int:
    """Display progress: rounded and capped at 100."""
    return min(round(funding_progress(event.get("current_amount"), event.get("target_amount"))), 100)


def present_event(event: Dict[str, Any], requester: Optional[TokenData] = None) -> Dict[str, Any]:
    """JSON-ready event with derived fields; the access code is only shown to the owner or an admin."""
    data = serialize_document(event)
    data["progress_percentage"] = progress_percentage(event)
    data.pop("checkout_lock", None)
    if not is_owner_or_admin(event, requester):
        data.pop("access_code", None)
    return data


async def _attach_product_summaries(events: List[Dict[str, Any]]) -> None:
    """Adds a 'product_details' summary to every product line (in place)."""
    product_ids = {line["product"] for event in events for line in event.get("products", [])}
    if not product_ids:
        return
    products_collection = database.get_collection_or_raise(get_products_collection)
    products_by_id = await database.find_by_ids(products_collection, list(product_ids))
    for event in events:
        for line in event.get("products", []):
            product = products_by_id.get(str(line["product"]))
            if product is not None:
                line["product_details"] = {
                    "_id": str(product["_id"]),
                    "name": product.get("name"),
                    "price": product.get("price"),
                    "stock": product.get("stock"),
                    "seller": str(product.get("seller")) if product.get("seller") is not None else None,
                }


def _parse_sort(sort_by: Optional[str]) -> List[Tuple[str, int]]:
    if not sort_by:
        return [("created_at", DESCENDING)]
    direction = DESCENDING if sort_by.startswith("-") else ASCENDING
    field = sort_by.lstrip("-+")
    if field not in _SORTABLE_FIELDS:
        raise ValidationError(f"Cannot sort by '{field}'", reasons=[f"Sortable fields: {', '.join(sorted(_SORTABLE_FIELDS))}"])
    return [(field, direction)]


def _pagination(page: int, limit: int, total_count: int) -> Dict[str, Any]:
    total_pages = -(-total_count // limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_count": total_count,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
        "limit": limit,
    }


# --- Create ---
async def create_event(payload: EventCreateRequest, requester: TokenData) -> Dict[str, Any]:
    """
    Creates a new event in 'pending' status.
    The target defaults to the sum of the wishlist prices when not given.
    """
    now = utc_now()
    errors: List[str] = []

    if payload.event_type not in EVENT_TYPES:
        raise ValidationError('Invalid event type. Please choose from available options or select "other" for custom events.')

    custom_event_type: Optional[str] = None
    if payload.event_type == "other":
        custom_event_type = (payload.custom_event_type or "").strip()
        if not custom_event_type:
            errors.append('Custom event type is required when event type is "other"')
        elif len(custom_event_type) > 50:
            errors.append("Custom event type must be 50 characters or less")

    event_date = to_naive_utc(payload.event_date)
    end_date = to_naive_utc(payload.end_date)
    if event_date < now:
        errors.append("Event date must not be in the past")
    if end_date < event_date:
        errors.append("End date must be on or after the event date")

    if not payload.products:
        errors.append("At least one product must be selected for the event")

    if errors:
        raise ValidationError("Validation failed", reasons=errors)

    products_collection = database.get_collection_or_raise(get_products_collection)
    product_ids = [oid(line.product, "product ID") for line in payload.products]
    products_by_id = await database.find_by_ids(products_collection, product_ids)

    calculated_target = 0.0
    lines: List[EventProductLine] = []
    for line, product_id in zip(payload.products, product_ids):
        product = products_by_id.get(str(product_id))
        if product is None:
            raise ValidationError(f"Product not found: {line.product}")
        if not product.get("is_active", True):
            raise ValidationError(f'Product "{product.get("name")}" is not available')
        calculated_target += float(product.get("price") or 0) * line.quantity
        lines.append(EventProductLine(product=product_id, quantity=line.quantity))

    event = Event(
        creator=oid(requester.user_id, "user ID"),
        title=payload.title,
        description=payload.description,
        event_type=payload.event_type,
        custom_event_type=custom_event_type,
        image=payload.image,
        event_date=event_date,
        end_date=end_date,
        visibility=payload.visibility,
        access_code=generate_access_code() if payload.visibility != "public" else None,
        shareable_link=generate_shareable_link(),
        target_amount=payload.target_amount or calculated_target,
        products=lines,
        created_at=now,
        updated_at=now,
    )

    document = event.model_dump(by_alias=True, exclude={"id"})
    events_collection = database.get_collection_or_raise(get_events_collection)
    document["_id"] = await database.insert_one(events_collection, document)
    print(f"Event {document['_id']} created by user {requester.user_id}.")

    await _attach_product_summaries([document])
    return present_event(document, requester)


# --- Read ---
async def get_event(event_id: str, requester: Optional[TokenData] = None, access_code: Optional[str] = None) -> Dict[str, Any]:
    """Returns one event. Private events need the owner, an admin, or the right access code."""
    event = await load_event(event_id)

    if event.get("visibility") == "private" and not is_owner_or_admin(event, requester):
        if not access_code or access_code != event.get("access_code"):
            raise AuthorizationError("Access denied. This event is private.", extra={"requires_access_code": True})

    await _attach_product_summaries([event])
    return present_event(event, requester)


async def list_events(
    requester: Optional[TokenData],
    page: int = 1,
    limit: int = 12,
    search: Optional[str] = None,
    event_type: Optional[str] = None,
    status: str = "active",
    visibility: str = "public",
    sort_by: str = "-created_at",
    creator: Optional[str] = None,
) -> Dict[str, Any]:
    """Public event listing. Only admins may list non-public events of other users."""
    query: Dict[str, Any] = {}

    if status and status != "all":
        query["status"] = status

    if requester is not None and requester.is_admin:
        if visibility and visibility != "all":
            query["visibility"] = visibility
    elif visibility == "public":
        query["visibility"] = "public"
    else:
        if requester is None:
            raise AuthorizationError("Sign in to list non-public events.")
        # Non-public listings are limited to the caller's own events.
        query["creator"] = oid(requester.user_id, "user ID")
        if visibility != "all":
            query["visibility"] = visibility

    if creator:
        creator_id = oid(creator, "creator ID")
        if "creator" in query and query["creator"] != creator_id:
            raise AuthorizationError("Access denied. You can only list your own non-public events.")
        query["creator"] = creator_id

    if event_type and event_type != "all":
        query["event_type"] = event_type

    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}, {"custom_event_type": pattern}]

    page, limit, skip = page_window(page, limit)
    events_collection = database.get_collection_or_raise(get_events_collection)
    events = await database.find_many(events_collection, query, {"sort": _parse_sort(sort_by), "skip": skip, "limit": limit})
    total_count = await database.count_documents(events_collection, query)

    await _attach_product_summaries(events)
    return {
        "events": [present_event(event, requester) for event in events],
        "pagination": _pagination(page, limit, total_count),
    }


async def list_user_events(requester: TokenData, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    """The caller's own events, newest first."""
    query: Dict[str, Any] = {"creator": oid(requester.user_id, "user ID")}
    if status and status != "all":
        query["status"] = status

    page, limit, skip = page_window(page, limit)
    events_collection = database.get_collection_or_raise(get_events_collection)
    events = await database.find_many(events_collection, query, {"sort": [("created_at", DESCENDING)], "skip": skip, "limit": limit})
    total_count = await database.count_documents(events_collection, query)

    await _attach_product_summaries(events)
    return {
        "events": [present_event(event, requester) for event in events],
        "pagination": _pagination(page, limit, total_count),
    }


# --- Status ---
async def _write_transition(event: Dict[str, Any], target_status: str) -> Dict[str, Any]:
    """Conditional status write: only succeeds if nobody changed the status since it was read."""
    now = utc_now()
    events_collection = database.get_collection_or_raise(get_events_collection)
    updated = await database.find_one_and_update(
        events_collection,
        {"_id": event["_id"], "status": event.get("status")},
        {"$set": state_machine.transition_fields(target_status, now)},
    )
    if updated is None:
        raise ConflictError("Event status was changed by another request. Reload the event and try again.")
    return updated


async def update_event_status(
    event_id: str,
    requester: TokenData,
    new_status: str,
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """Moves an event to `new_status` if the caller may and the transition table allows it."""
    event = await load_event(event_id)
    require_owner_or_admin(event, requester, "update")

    state_machine.check_transition(event, new_status)
    updated = await _write_transition(event, new_status)
    print(f"Event {event['_id']} status changed from '{event.get('status')}' to '{new_status}' by user {requester.user_id}.")

    if not same_id(event.get("creator"), requester.user_id):
        await dispatch_notification(
            notifier,
            event.get("creator"),
            notifications.EVENT_STATUS_CHANGED,
            {"event_id": str(event["_id"]), "title": event.get("title"), "old_status": event.get("status"), "new_status": new_status},
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )

    return present_event(updated, requester)


async def activate_after_initial_contribution(event: Dict[str, Any]) -> bool:
    """
    System-driven pending -> active once the event holds money.
    Goes through the same table and guards as a manual change; losing the race to
    another activation is fine, so a ConflictError here is not reported.
    """
    if event.get("status") != state_machine.PENDING or float(event.get("current_amount") or 0) <= 0:
        return False
    state_machine.check_transition(event, state_machine.ACTIVE)
    try:
        await _write_transition(event, state_machine.ACTIVE)
    except ConflictError:
        return False
    print(f"Event {event['_id']} activated after initial contribution.")
    return True


# --- Delete ---
async def delete_event(event_id: str, requester: TokenData) -> Dict[str, Any]:
    """
    Hard-deletes an event that never held money. Anything else is cancelled instead.
    Returns {"outcome": "deleted" | "cancelled", ...}.
    """
    event = await load_event(event_id)
    require_owner_or_admin(event, requester, "delete")

    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    live_contributions = await database.count_documents(
        contributions_collection,
        {"event": event["_id"], "payment_status": {"$in": _LIVE_CONTRIBUTION_STATUSES}},
    )

    if float(event.get("current_amount") or 0) == 0 and live_contributions == 0:
        events_collection = database.get_collection_or_raise(get_events_collection)
        result = await database.delete_one(events_collection, {"_id": event["_id"], "current_amount": event.get("current_amount", 0)})
        if result.deleted_count == 0:
            raise ConflictError("Event changed while it was being deleted. Reload the event and try again.")
        # Only failed attempts can remain at this point.
        await database.delete_many(contributions_collection, {"event": event["_id"]})
        print(f"Event {event['_id']} deleted by user {requester.user_id}.")
        return {"outcome": "deleted", "event_id": str(event["_id"])}

    if event.get("status") == state_machine.CANCELLED:
        return {"outcome": "cancelled", "event_id": str(event["_id"]), "event": present_event(event, requester)}

    try:
        state_machine.check_transition(event, state_machine.CANCELLED)
    except ValidationError as e:
        raise ValidationError(
            "Event has contributions and cannot be deleted or cancelled.",
            reasons=[e.message],
        )
    updated = await _write_transition(event, state_machine.CANCELLED)
    print(f"Event {event['_id']} has contributions; cancelled instead of deleted by user {requester.user_id}.")
    return {"outcome": "cancelled", "event_id": str(event["_id"]), "event": present_event(updated, requester)}

# giftfund/features/events/routes.py

# This file defines the FastAPI endpoints for event management
# and delegates the work to the events service layer.

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from . import service as events_service
from ...models.auth import TokenData
from ...models.event import EventCreateRequest, EventStatusUpdateRequest
from ...features.user.auth.dependencies import get_current_user, get_optional_user
from ...shared.dependencies import get_notifier
from ...shared.notifications import NotificationPort


# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/events",
    tags=["events"]
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    payload: EventCreateRequest,
    current_user: TokenData = Depends(get_current_user),
):
    """Creates a new event. It stays 'pending' until the first contribution is completed."""
    print(f"Received request to create event '{payload.title}' by user ID: {current_user.user_id}")
    event = await events_service.create_event(payload, current_user)
    return {"success": True, "message": "Event created successfully", "data": event}


@router.get("")
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1),
    search: Optional[str] = None,
    event_type: Optional[str] = None,
    status_filter: str = Query("active", alias="status"),
    visibility: str = "public",
    sort_by: str = "-created_at",
    creator: Optional[str] = None,
    current_user: Optional[TokenData] = Depends(get_optional_user),
):
    result = await events_service.list_events(
        current_user,
        page=page,
        limit=limit,
        search=search,
        event_type=event_type,
        status=status_filter,
        visibility=visibility,
        sort_by=sort_by,
        creator=creator,
    )
    return {"success": True, "data": result["events"], "pagination": result["pagination"]}


# Declared before /{event_id} so "my-events" is not taken for an id.
@router.get("/my-events")
async def list_my_events_endpoint(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    current_user: TokenData = Depends(get_current_user),
):
    result = await events_service.list_user_events(current_user, status=status_filter, page=page, limit=limit)
    return {"success": True, "data": result["events"], "pagination": result["pagination"]}


@router.get("/{event_id}")
async def get_event_endpoint(
    event_id: str,
    access_code: Optional[str] = None,
    current_user: Optional[TokenData] = Depends(get_optional_user),
):
    """Fetches one event. Private events need the owner, an admin or ?access_code=."""
    event = await events_service.get_event(event_id, current_user, access_code)
    return {"success": True, "data": event}


@router.put("/{event_id}/status")
async def update_event_status_endpoint(
    event_id: str,
    payload: EventStatusUpdateRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    print(f"Received request to change status of event {event_id} to '{payload.status}' by user ID: {current_user.user_id}")
    event = await events_service.update_event_status(event_id, current_user, payload.status, notifier)
    return {"success": True, "message": f"Event status updated to {payload.status}", "data": event}


@router.delete("/{event_id}")
async def delete_event_endpoint(
    event_id: str,
    current_user: TokenData = Depends(get_current_user),
):
    """Deletes an event without money; events that hold contributions are cancelled instead."""
    result = await events_service.delete_event(event_id, current_user)
    if result["outcome"] == "deleted":
        message = "Event deleted successfully"
    else:
        message = "Event has contributions and was cancelled instead of deleted"
    return {"success": True, "message": message, "data": result}

# giftfund/features/orders/routes.py

# This file defines the FastAPI endpoints for orders created by event checkout.

from fastapi import APIRouter, Depends

from . import service as orders_service
from ...models.auth import TokenData
from ...models.order import OrderProgressUpdateRequest
from ...features.user.auth.dependencies import get_current_user
from ...shared.dependencies import get_notifier
from ...shared.notifications import NotificationPort


# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/orders",
    tags=["orders"]
)


@router.get("/event/{event_id}")
async def list_event_orders_endpoint(
    event_id: str,
    current_user: TokenData = Depends(get_current_user),
):
    orders = await orders_service.list_event_orders(event_id, current_user)
    return {"success": True, "count": len(orders), "data": orders}


@router.get("/{order_id}")
async def get_order_endpoint(
    order_id: str,
    current_user: TokenData = Depends(get_current_user),
):
    order = await orders_service.get_order(order_id, current_user)
    return {"success": True, "data": order}


@router.put("/{order_id}/progress")
async def update_order_progress_endpoint(
    order_id: str,
    payload: OrderProgressUpdateRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    print(f"Received progress update '{payload.progress}' for order {order_id} by user ID: {current_user.user_id}")
    order = await orders_service.update_order_progress(order_id, current_user, payload.progress, payload.description, notifier)
    return {"success": True, "message": f"Order progress updated to {payload.progress}", "data": order}

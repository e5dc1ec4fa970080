# giftfund/features/checkout/routes.py

# This file defines the FastAPI endpoints for event checkout
# and delegates requests to the checkout orchestration layer.

from fastapi import APIRouter, Depends

from . import orchestration as checkout_orchestration
from ...models.auth import TokenData
from ...models.order import CheckoutRequest
from ...features.user.auth.dependencies import get_current_user
from ...shared.dependencies import get_notifier
from ...shared.notifications import NotificationPort


# --- Define API Router for this feature ---
# Checkout lives under the event it converts into orders.
router = APIRouter(
    prefix="/api/events",
    tags=["checkout"]
)


@router.get("/{event_id}/checkout/eligibility")
async def checkout_eligibility_endpoint(
    event_id: str,
    current_user: TokenData = Depends(get_current_user),
):
    validation = await checkout_orchestration.check_checkout_eligibility(event_id, current_user)
    return {"success": True, "data": validation}


@router.post("/{event_id}/checkout")
async def complete_checkout_endpoint(
    event_id: str,
    payload: CheckoutRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    """Creates one order per seller from the event wishlist and completes the event."""
    print(f"Received checkout request for event {event_id} by user ID: {current_user.user_id}")
    result = await checkout_orchestration.complete_event_checkout(
        event_id,
        current_user,
        payload.shipping_details,
        payload.payment_method,
        notifier,
    )
    return {"success": True, "message": "Event checkout completed successfully", "data": result}

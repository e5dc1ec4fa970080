# giftfund/features/contributions/routes.py

# This file defines the FastAPI endpoints for contributions and payment confirmation
# and delegates the work to the contribution ledger service.

from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, status

from . import service as contributions_service
from .payment_gateway import PaymentGateway
from ...config.settings import settings
from ...models.auth import TokenData
from ...models.contribution import ContributionCreateRequest, ContributionStatusUpdateRequest
from ...features.user.auth.dependencies import get_current_user, get_optional_user
from ...shared.dependencies import get_notifier, get_payment_gateway
from ...shared.errors import AuthorizationError
from ...shared.notifications import NotificationPort


# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/contributions",
    tags=["contributions"]
)


def _schedule_simulation(background_tasks: BackgroundTasks, outcome: Dict[str, Any], notifier: NotificationPort) -> None:
    if outcome.pop("simulate", False):
        contribution_id = outcome["contribution"]["_id"]
        print(f"Simulating payment completion in {settings.PAYMENT_SIMULATION_DELAY_SECONDS}s for contribution {contribution_id}.")
        background_tasks.add_task(
            contributions_service.simulate_payment_confirmation,
            contribution_id,
            settings.PAYMENT_SIMULATION_DELAY_SECONDS,
            notifier,
        )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contribution_endpoint(
    payload: ContributionCreateRequest,
    background_tasks: BackgroundTasks,
    current_user: TokenData = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationPort = Depends(get_notifier),
):
    """Creates a pending contribution and starts its payment."""
    print(f"Received contribution of {payload.amount} via {payload.payment_method} for event {payload.event_id} by user ID: {current_user.user_id}")
    outcome = await contributions_service.create_contribution(payload, current_user, gateway)
    _schedule_simulation(background_tasks, outcome, notifier)
    return {"success": True, "data": outcome}


@router.get("/my-contributions")
async def list_my_contributions_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    current_user: TokenData = Depends(get_current_user),
):
    result = await contributions_service.list_user_contributions(current_user, page=page, limit=limit)
    return {"success": True, "count": result["count"], "pagination": result["pagination"], "data": result["contributions"]}


@router.post("/mpesa-callback")
async def mpesa_callback_endpoint(
    payload: Dict[str, Any] = Body(...),
    notifier: NotificationPort = Depends(get_notifier),
):
    """STK push result from M-PESA. Always acknowledged."""
    print("M-PESA callback received.")
    return await contributions_service.handle_mpesa_callback(payload, notifier)


@router.post("/expire-stale")
async def expire_stale_contributions_endpoint(
    older_than_minutes: Optional[int] = Query(None, ge=0),
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    if not current_user.is_admin:
        raise AuthorizationError("Only admins can expire contributions")
    result = await contributions_service.expire_stale_contributions(older_than_minutes, notifier)
    return {"success": True, "data": result}


@router.get("/event/{event_id}")
async def list_event_contributions_endpoint(
    event_id: str,
    access_code: Optional[str] = None,
    current_user: Optional[TokenData] = Depends(get_optional_user),
):
    result = await contributions_service.list_contributions_for_event(event_id, current_user, access_code)
    return {"success": True, "count": result["count"], "stats": result["stats"], "data": result["contributions"]}


@router.get("/{contribution_id}")
async def get_contribution_endpoint(
    contribution_id: str,
    current_user: TokenData = Depends(get_current_user),
):
    contribution = await contributions_service.get_contribution(contribution_id, current_user)
    return {"success": True, "data": contribution}


@router.put("/{contribution_id}/status")
async def update_contribution_status_endpoint(
    contribution_id: str,
    payload: ContributionStatusUpdateRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    """Payment confirmation / administrative correction. Admin only."""
    if not current_user.is_admin:
        raise AuthorizationError("Only admins can change the payment status of a contribution")
    print(f"Admin {current_user.user_id} sets contribution {contribution_id} to '{payload.payment_status}'.")
    result = await contributions_service.confirm_contribution_payment(
        contribution_id,
        payload.payment_status,
        transaction_id=payload.transaction_id,
        provider_details=payload.payment_details,
        notifier=notifier,
    )
    return {"success": True, "data": result}


@router.post("/{contribution_id}/retry-payment")
async def retry_contribution_payment_endpoint(
    contribution_id: str,
    background_tasks: BackgroundTasks,
    current_user: TokenData = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationPort = Depends(get_notifier),
):
    outcome = await contributions_service.retry_contribution_payment(contribution_id, current_user, gateway)
    _schedule_simulation(background_tasks, outcome, notifier)
    return {"success": True, "data": outcome}

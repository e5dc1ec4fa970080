# giftfund/features/invitations/routes.py

# This file defines the FastAPI endpoints for event invitations
# and delegates the work to the invitations service layer.

from typing import Optional

from fastapi import APIRouter, Depends, Query

from . import service as invitations_service
from ...models.auth import TokenData
from ...models.invitation import InvitationRespondRequest, InviteUsersRequest
from ...features.user.auth.dependencies import get_current_user
from ...shared.dependencies import get_notifier
from ...shared.notifications import NotificationPort


# --- Define API Router for this feature ---
router = APIRouter(
    prefix="/api/events",
    tags=["invitations"]
)


@router.post("/{event_id}/invite")
async def invite_users_endpoint(
    event_id: str,
    payload: InviteUsersRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    result = await invitations_service.invite_users(event_id, current_user, payload.invites, notifier)
    return {"success": True, "message": f"Successfully invited {result['total_invited']} user(s)", "data": result}


@router.put("/{event_id}/invitation/respond")
async def respond_to_invitation_endpoint(
    event_id: str,
    payload: InvitationRespondRequest,
    current_user: TokenData = Depends(get_current_user),
    notifier: NotificationPort = Depends(get_notifier),
):
    result = await invitations_service.respond_to_invitation(event_id, current_user, payload.response, notifier)
    return {"success": True, "message": f"Invitation {payload.response} successfully", "data": result}


@router.get("/{event_id}/invitations")
async def get_event_invitations_endpoint(
    event_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    current_user: TokenData = Depends(get_current_user),
):
    result = await invitations_service.get_event_invitations(event_id, current_user, status_filter)
    return {"success": True, "data": result["invitations"], "summary": result["summary"]}

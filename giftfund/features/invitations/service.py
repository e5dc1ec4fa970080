# giftfund/features/invitations/service.py

# This file contains the business logic for event invitations.
# Invitations are embedded in the event document (Event.invited_users).
# A batch is all-or-nothing: one bad entry rejects the whole batch.

import re
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email

from ..events import service as events_service
from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import get_events_collection, get_users_collection
from ...models.auth import TokenData
from ...models.event import Invitation
from ...models.invitation import InviteEntry
from ...shared import notifications
from ...shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ...shared.notifications import NotificationPort, dispatch_notification
from ...shared.utils import oid, serialize_document, utc_now


INVITATION_RESPONSES = ("accepted", "declined")
INVITATION_STATUSES = ("pending", "accepted", "declined")


def _normalize_email(email: str) -> str:
    """Returns the normalized, lower-cased address or raises EmailNotValidError."""
    return validate_email(email, check_deliverability=False).normalized.lower()


async def invite_users(
    event_id: str,
    inviter: TokenData,
    invites: List[InviteEntry],
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """Adds a batch of invitations to an event. Any invalid or duplicate entry rejects the batch."""
    if not invites:
        raise ValidationError("At least one invite is required")

    event = await events_service.load_event(event_id)
    if not events_service.is_owner_or_admin(event, inviter):
        raise AuthorizationError("Access denied. You can only invite users to your own events.")

    existing = event.get("invited_users") or []
    seen_emails = {(entry.get("email") or "").lower() for entry in existing if entry.get("email")}
    seen_phones = {entry.get("phone_number") for entry in existing if entry.get("phone_number")}

    errors: List[str] = []
    new_invites: List[Dict[str, Any]] = []
    now = utc_now()

    for position, invite in enumerate(invites, start=1):
        raw_email = (invite.email or "").strip()
        phone_number = (invite.phone_number or "").strip()

        email = None
        if raw_email:
            try:
                email = _normalize_email(raw_email)
            except EmailNotValidError:
                errors.append(f"Invalid email format at position {position}: {raw_email}")
                continue

        if phone_number and not re.match(settings.INVITE_PHONE_PATTERN, phone_number):
            errors.append(f"Invalid phone format at position {position}: {phone_number}. Use format +254XXXXXXXXX")
            continue

        if not email and not phone_number:
            errors.append(f"Either email or phone number required at position {position}")
            continue

        if (email and email in seen_emails) or (phone_number and phone_number in seen_phones):
            errors.append(f"User at position {position} is already invited")
            continue

        if email:
            seen_emails.add(email)
        if phone_number:
            seen_phones.add(phone_number)

        invitation = Invitation(
            name=(invite.name or "").strip(),
            email=email,
            phone_number=phone_number or None,
            invited_at=now,
        )
        new_invites.append(invitation.model_dump(by_alias=True))

    if errors:
        raise ValidationError("Validation errors occurred", reasons=errors)

    batch_emails = [invite["email"] for invite in new_invites if invite["email"]]
    batch_phones = [invite["phone_number"] for invite in new_invites if invite["phone_number"]]

    # Duplicates are checked again inside the write so concurrent batches cannot both add one.
    events_collection = database.get_collection_or_raise(get_events_collection)
    result = await database.update_one(
        events_collection,
        {
            "_id": event["_id"],
            "invited_users.email": {"$nin": batch_emails},
            "invited_users.phone_number": {"$nin": batch_phones},
        },
        {"$push": {"invited_users": {"$each": new_invites}}, "$set": {"updated_at": now}},
    )
    if result.matched_count == 0:
        raise ConflictError("Some of these users were invited by another request. Reload the invitations and try again.")

    print(f"Invited {len(new_invites)} user(s) to event {event['_id']}.")
    await _notify_registered_invitees(notifier, event, batch_emails, batch_phones)

    return {
        "event_id": str(event["_id"]),
        "total_invited": len(new_invites),
        "total_invited_users": len(existing) + len(new_invites),
        "new_invites": serialize_document(new_invites),
    }


async def _notify_registered_invitees(
    notifier: Optional[NotificationPort],
    event: Dict[str, Any],
    emails: List[str],
    phones: List[str],
) -> None:
    """Invitees with an account get an in-app notification; delivery to others is external."""
    users_collection = get_users_collection()
    if notifier is None or users_collection is None or not (emails or phones):
        return
    users = await database.find_many(
        users_collection,
        {"$or": [{"email": {"$in": emails}}, {"phone_number": {"$in": phones}}]},
        {"projection": {"_id": 1}},
    )
    for user in users:
        await dispatch_notification(
            notifier,
            user["_id"],
            notifications.EVENT_INVITATION,
            {"event_id": str(event["_id"]), "title": event.get("title"), "inviter_id": str(event.get("creator"))},
            settings.NOTIFICATION_TIMEOUT_SECONDS,
        )


async def respond_to_invitation(
    event_id: str,
    requester: TokenData,
    response: str,
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """Accepts or declines the invitation addressed to the caller's email or phone number."""
    if response not in INVITATION_RESPONSES:
        raise ValidationError('Response must be "accepted" or "declined"')

    event = await events_service.load_event(event_id)

    users_collection = database.get_collection_or_raise(get_users_collection)
    user = await database.find_one(users_collection, {"_id": oid(requester.user_id, "user ID")})
    if user is None:
        raise NotFoundError("User not found")

    user_email = (user.get("email") or "").lower()
    user_phone = user.get("phone_number")
    invitation = next(
        (
            invite for invite in event.get("invited_users") or []
            if (invite.get("email") and user_email and invite["email"].lower() == user_email)
            or (invite.get("phone_number") and user_phone and invite["phone_number"] == user_phone)
        ),
        None,
    )
    if invitation is None:
        raise NotFoundError("No invitation found for this user")

    now = utc_now()
    events_collection = database.get_collection_or_raise(get_events_collection)
    result = await database.update_one(
        events_collection,
        {"_id": event["_id"], "invited_users._id": invitation["_id"]},
        {"$set": {
            "invited_users.$.status": response,
            "invited_users.$.responded_at": now,
            "updated_at": now,
        }},
    )
    if result.matched_count == 0:
        raise NotFoundError("No invitation found for this user")

    await dispatch_notification(
        notifier,
        event.get("creator"),
        notifications.INVITATION_RESPONSE,
        {"event_id": str(event["_id"]), "title": event.get("title"), "user_id": requester.user_id, "response": response},
        settings.NOTIFICATION_TIMEOUT_SECONDS,
    )

    return {
        "event_id": str(event["_id"]),
        "event_title": event.get("title"),
        "response": response,
        "responded_at": now,
    }


async def get_event_invitations(event_id: str, requester: TokenData, status: Optional[str] = None) -> Dict[str, Any]:
    event = await events_service.load_event(event_id)
    if not events_service.is_owner_or_admin(event, requester):
        raise AuthorizationError("Access denied. You can only view invitations for your own events.")

    all_invitations = event.get("invited_users") or []
    invitations = all_invitations
    if status in INVITATION_STATUSES:
        invitations = [invite for invite in all_invitations if invite.get("status") == status]

    summary = {"total": len(all_invitations)}
    for invitation_status in INVITATION_STATUSES:
        summary[invitation_status] = sum(1 for invite in all_invitations if invite.get("status") == invitation_status)

    return {"invitations": serialize_document(invitations), "summary": summary}

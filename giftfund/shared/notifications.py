# giftfund/shared/notifications.py

# Notification port used by the contribution, checkout and invitation services.
# Services receive a notifier instead of reaching for a process-wide broadcaster,
# and a failing notifier never fails the operation that triggered it.

import asyncio
import traceback
from typing import Any, Dict, Optional, Protocol

from ..db import mongo_client as database
from .utils import utc_now


# --- Notification types ---
EVENT_CONTRIBUTION = "event_contribution"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_FAILED = "payment_failed"
EVENT_TARGET_REACHED = "event_target_reached"
EVENT_STATUS_CHANGED = "event_status_changed"
EVENT_CHECKOUT_COMPLETED = "event_checkout_completed"
NEW_ORDER = "new_order"
ORDER_PROGRESS = "order_progress"
EVENT_INVITATION = "event_invitation"
INVITATION_RESPONSE = "invitation_response"


class NotificationPort(Protocol):
    async def notify(self, recipient_id: Any, notification_type: str, payload: Dict[str, Any]) -> None:
        ...


class NoOpNotifier:
    """Drops every notification. Used when no delivery channel is configured."""

    async def notify(self, recipient_id: Any, notification_type: str, payload: Dict[str, Any]) -> None:
        return None


class MongoNotifier:
    """Stores notifications in the 'notifications' collection for the delivery service to pick up."""

    async def notify(self, recipient_id: Any, notification_type: str, payload: Dict[str, Any]) -> None:
        collection = database.get_collection_or_raise(database.get_notifications_collection)
        await database.insert_one(collection, {
            "recipient": recipient_id,
            "type": notification_type,
            "payload": payload,
            "read": False,
            "created_at": utc_now(),
        })


async def dispatch_notification(
    notifier: Optional[NotificationPort],
    recipient_id: Any,
    notification_type: str,
    payload: Dict[str, Any],
    timeout: float = 5.0,
) -> bool:
    """Sends one notification, bounded by a timeout. Returns False if it could not be delivered."""
    if notifier is None or recipient_id is None:
        return False
    try:
        await asyncio.wait_for(notifier.notify(recipient_id, notification_type, payload), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        print(f"Warning: Notification '{notification_type}' to {recipient_id} timed out after {timeout}s.")
    except Exception as e:
        print(f"Warning: Notification '{notification_type}' to {recipient_id} failed: {e}")
        traceback.print_exc()
    return False

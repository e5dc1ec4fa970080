# giftfund/features/events/state_machine.py

# The one place where event status transitions are decided.
# Services call check_transition() before any status write; nothing else
# in the codebase should compare status strings to allow or refuse a change.

import datetime
from typing import Any, Dict, Optional

from ...config.settings import settings
from ...shared.errors import ValidationError
from ...shared.utils import funding_progress, utc_now


PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

# --- Transition Table ---
TRANSITIONS: Dict[str, frozenset] = {
    PENDING: frozenset({ACTIVE, CANCELLED}),
    ACTIVE: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset({ACTIVE}),
}

# Statuses in which an event still takes money.
ACCEPTING_FUNDS = frozenset({PENDING, ACTIVE})


def is_known_status(status: Any) -> bool:
    return status in TRANSITIONS


def is_completion_due(event: Dict[str, Any], now: Optional[datetime.datetime] = None, threshold: Optional[float] = None) -> bool:
    """Funding reached the partial threshold, or the event's end date has passed."""
    now = now or utc_now()
    threshold = settings.CHECKOUT_PARTIAL_FUNDING_THRESHOLD if threshold is None else threshold
    progress = funding_progress(event.get("current_amount"), event.get("target_amount"))
    if progress >= threshold:
        return True
    end_date = event.get("end_date")
    return end_date is not None and now >= end_date


def check_transition(event: Dict[str, Any], target_status: str, now: Optional[datetime.datetime] = None) -> None:
    """
    Validates moving `event` (a stored document) to `target_status`.
    Raises ValidationError naming the transition when the table or a guard refuses it.
    """
    current_status = event.get("status", PENDING)

    if not is_known_status(target_status):
        raise ValidationError(f'Invalid status "{target_status}"', reasons=[f"Status must be one of: {', '.join(TRANSITIONS)}"])

    if target_status not in TRANSITIONS.get(current_status, frozenset()):
        raise ValidationError(f'Cannot change status from "{current_status}" to "{target_status}"')

    # --- Guards ---
    # Applies to reactivation of a cancelled event too.
    if target_status == ACTIVE:
        if float(event.get("current_amount") or 0) <= 0:
            raise ValidationError(
                "Event must have at least one contribution before becoming active",
                reasons=[f'Cannot change status from "{current_status}" to "{target_status}"'],
            )

    if target_status == COMPLETED and not is_completion_due(event, now):
        raise ValidationError(
            f"Event can only be completed if it has reached {settings.CHECKOUT_PARTIAL_FUNDING_THRESHOLD:g}% funding or passed its end date",
            reasons=[f'Cannot change status from "{current_status}" to "{target_status}"'],
        )


def transition_fields(target_status: str, now: datetime.datetime) -> Dict[str, Any]:
    """The $set fields that go with entering `target_status`."""
    fields: Dict[str, Any] = {"status": target_status, "updated_at": now}
    if target_status == COMPLETED:
        fields["completed_at"] = now
    elif target_status == CANCELLED:
        fields["cancelled_at"] = now
    return fields

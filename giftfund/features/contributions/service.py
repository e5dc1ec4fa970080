# giftfund/features/contributions/service.py

# This file contains the contribution ledger: creating contributions, starting
# payments through the gateway, confirming them, and keeping the event total
# in line with the completed contributions.
#
# Event.current_amount is never incremented. Every confirmation recomputes it
# from the completed contributions, so replayed or out-of-order confirmations
# end in the same total.

import asyncio
import datetime
import re
import traceback
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING

from .payment_gateway import PaymentGateway, PaymentInitiation
from ..events import service as events_service
from ..events import state_machine
from ...config.settings import settings
from ...db import mongo_client as database
from ...db.mongo_client import (
    get_contributions_collection,
    get_events_collection,
    get_users_collection,
)
from ...models.auth import TokenData
from ...models.contribution import PAYMENT_STATUSES, Contribution, ContributionCreateRequest
from ...shared import notifications
from ...shared.errors import (
    AuthorizationError,
    ConflictError,
    ExternalServiceError,
    GiftFundError,
    NotFoundError,
    ValidationError,
)
from ...shared.notifications import NotificationPort, dispatch_notification
from ...shared.utils import oid, page_window, same_id, serialize_document, utc_now


# --- Payment status transitions ---
# Same-status confirmations are treated as replays, not transitions.
PAYMENT_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"processing", "completed", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset({"refunded"}), # Administrative correction only
    "failed": frozenset(),
    "refunded": frozenset(),
}

CONFIRMATION_RESULTS = frozenset({"processing", "completed", "failed", "refunded"})

_DETAIL_FIELDS = {"mpesa": "mpesa_details", "card": "card_details", "paypal": "paypal_details"}
_PRIVATE_FIELDS = ("mpesa_details", "card_details", "paypal_details", "metadata", "failure_reason")


# --- Helpers ---
async def load_contribution(contribution_id: Any) -> Dict[str, Any]:
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    contribution = await database.find_one(contributions_collection, {"_id": oid(contribution_id, "contribution ID")})
    if contribution is None:
        raise NotFoundError("Contribution not found")
    return contribution


def present_contribution(contribution: Dict[str, Any], include_private: bool = True) -> Dict[str, Any]:
    data = serialize_document(contribution)
    if contribution.get("anonymous"):
        data["contributor"] = None
    if not include_private:
        for field in _PRIVATE_FIELDS:
            data.pop(field, None)
    return data


def _validate_phone_number(phone_number: Optional[str]) -> str:
    if not phone_number:
        raise ValidationError("Phone number is required for M-PESA payments")
    if not re.match(settings.INVITE_PHONE_PATTERN, phone_number):
        raise ValidationError("Please enter a valid Kenyan phone number (+254...)")
    return phone_number


async def _attach_event_summaries(contributions: List[Dict[str, Any]], output: List[Dict[str, Any]]) -> None:
    events_collection = database.get_collection_or_raise(get_events_collection)
    events_by_id = await database.find_by_ids(events_collection, list({c["event"] for c in contributions}))
    for contribution, item in zip(contributions, output):
        event = events_by_id.get(str(contribution["event"]))
        if event is not None:
            item["event_summary"] = {"_id": str(event["_id"]), "title": event.get("title"), "event_type": event.get("event_type")}


async def _attach_contributor_names(contributions: List[Dict[str, Any]], output: List[Dict[str, Any]]) -> None:
    users_collection = get_users_collection()
    if users_collection is None:
        return
    visible_ids = list({c["contributor"] for c in contributions if not c.get("anonymous")})
    users_by_id = await database.find_by_ids(users_collection, visible_ids)
    for contribution, item in zip(contributions, output):
        if contribution.get("anonymous"):
            item["contributor_name"] = "Anonymous"
            continue
        user = users_by_id.get(str(contribution["contributor"]))
        item["contributor_name"] = user.get("name") if user else None


# --- Event total ---
async def _aggregate_completed(event_id: ObjectId) -> Tuple[float, List[ObjectId]]:
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    rows = await database.aggregate(contributions_collection, [
        {"$match": {"event": event_id, "payment_status": "completed"}},
        {"$group": {"_id": None, "total": {"$sum": "$amount"}, "ids": {"$push": "$_id"}}},
    ])
    if not rows:
        return 0.0, []
    return float(rows[0].get("total") or 0), list(rows[0].get("ids") or [])


async def recalculate_event_total(event_id: ObjectId) -> Tuple[Optional[Dict[str, Any]], bool]:
    """
    Recomputes current_amount and the completed-contribution list of an event.
    Returns (event after the update, True if this call set the fully-funded marker).
    """
    events_collection = database.get_collection_or_raise(get_events_collection)

    # A concurrent confirmation may write its (older) total after ours; re-check until stable.
    for _ in range(3):
        total, ids = await _aggregate_completed(event_id)
        await database.update_one(
            events_collection,
            {"_id": event_id},
            {"$set": {"current_amount": total, "contributions": ids, "updated_at": utc_now()}},
        )
        check_total, _ = await _aggregate_completed(event_id)
        if check_total == total:
            break

    event = await database.find_one(events_collection, {"_id": event_id})
    if event is None:
        return None, False

    reached_target = False
    target = float(event.get("target_amount") or 0)
    if target > 0 and total >= target:
        result = await database.update_one(
            events_collection,
            {"_id": event_id, "is_fully_funded": {"$ne": True}},
            {"$set": {"is_fully_funded": True, "fully_funded_at": utc_now()}},
        )
        reached_target = result.modified_count == 1
    elif event.get("is_fully_funded"):
        # A refund took the event back under its target.
        await database.update_one(
            events_collection,
            {"_id": event_id, "is_fully_funded": True},
            {"$set": {"is_fully_funded": False, "fully_funded_at": None}},
        )

    if reached_target or event.get("is_fully_funded"):
        event = await database.find_one(events_collection, {"_id": event_id})
    return event, reached_target


async def _mark_initial_contribution(event: Dict[str, Any], contributor_id: Any) -> Dict[str, Any]:
    """Records the first completed contribution and activates a pending event."""
    events_collection = database.get_collection_or_raise(get_events_collection)
    await database.update_one(
        events_collection,
        {"_id": event["_id"], "initial_contribution_made": {"$ne": True}},
        {"$set": {"initial_contribution_made": True, "initial_contributor": contributor_id}},
    )
    if event.get("status") == state_machine.PENDING:
        refreshed = await database.find_one(events_collection, {"_id": event["_id"]})
        if refreshed is not None and await events_service.activate_after_initial_contribution(refreshed):
            return await database.find_one(events_collection, {"_id": event["_id"]}) or refreshed
        return refreshed or event
    return event


# --- Payment initiation ---
async def _initiate_payment(
    contribution: Dict[str, Any],
    event: Dict[str, Any],
    gateway: PaymentGateway,
    phone_number: Optional[str],
) -> PaymentInitiation:
    """Starts the payment and stores the gateway details. Failures leave the contribution pending."""
    contribution_id = str(contribution["_id"])
    try:
        initiation = await asyncio.wait_for(
            gateway.initiate(contribution, event, phone_number),
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        print(f"Error: Payment gateway timed out for contribution {contribution_id}.")
        raise ExternalServiceError(
            "Payment gateway did not respond in time. The contribution is still pending; retry the payment.",
            extra={"contribution_id": contribution_id},
        )
    except ExternalServiceError as e:
        raise ExternalServiceError(
            f"{e.message} The contribution is still pending; retry the payment.",
            reasons=e.reasons,
            extra={**e.extra, "contribution_id": contribution_id},
        )

    detail_field = _DETAIL_FIELDS[contribution["payment_method"]]
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    await database.update_one(
        contributions_collection,
        {"_id": contribution["_id"], "payment_status": "pending"},
        {"$set": {
            detail_field: initiation.details,
            "metadata.provider": initiation.provider,
            "metadata.last_initiated_at": utc_now(),
            "updated_at": utc_now(),
        }},
    )
    contribution[detail_field] = initiation.details
    return initiation


def _should_simulate(initiation: PaymentInitiation) -> bool:
    return settings.PAYMENT_SIMULATION_ENABLED and initiation.simulated


async def create_contribution(
    payload: ContributionCreateRequest,
    requester: TokenData,
    gateway: PaymentGateway,
) -> Dict[str, Any]:
    """
    Records a pending contribution and starts its payment.
    Returns {"contribution", "payment", "simulate"}; the caller schedules the
    simulated confirmation when "simulate" is True.
    """
    if payload.amount is None or payload.amount <= 0:
        raise ValidationError("Contribution amount must be greater than 0")

    event = await events_service.load_event(payload.event_id)
    if event.get("status") not in state_machine.ACCEPTING_FUNDS:
        raise ValidationError(f'Event is not accepting contributions (status "{event.get("status")}")')

    phone_number = None
    if payload.payment_method == "mpesa":
        phone_number = _validate_phone_number(payload.phone_number)

    now = utc_now()
    contribution = Contribution(
        event=event["_id"],
        contributor=oid(requester.user_id, "user ID"),
        amount=payload.amount,
        message=payload.message,
        anonymous=payload.anonymous,
        payment_method=payload.payment_method,
        # Kept from the start so a failed initiation can be retried.
        mpesa_details={"phone_number": phone_number} if phone_number else None,
        created_at=now,
        updated_at=now,
    )
    document = contribution.model_dump(by_alias=True, exclude={"id"})
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    document["_id"] = await database.insert_one(contributions_collection, document)
    print(f"Contribution {document['_id']} of {payload.amount} created for event {event['_id']} by user {requester.user_id}.")

    initiation = await _initiate_payment(document, event, gateway, phone_number)
    return {
        "contribution": present_contribution(document),
        "payment": initiation.model_dump(exclude={"details"}),
        "simulate": _should_simulate(initiation),
    }


async def retry_contribution_payment(contribution_id: str, requester: TokenData, gateway: PaymentGateway) -> Dict[str, Any]:
    """Starts the payment of a still-pending contribution again."""
    contribution = await load_contribution(contribution_id)
    if not requester.is_admin and not same_id(contribution.get("contributor"), requester.user_id):
        raise AuthorizationError("Not authorized to retry this contribution")
    if contribution.get("payment_status") != "pending":
        raise ConflictError(f'Only pending contributions can be retried (status "{contribution.get("payment_status")}")')

    event = await events_service.load_event(contribution["event"])
    if event.get("status") not in state_machine.ACCEPTING_FUNDS:
        raise ValidationError(f'Event is not accepting contributions (status "{event.get("status")}")')

    phone_number = None
    if contribution["payment_method"] == "mpesa":
        phone_number = _validate_phone_number((contribution.get("mpesa_details") or {}).get("phone_number"))

    print(f"Retrying payment for contribution {contribution['_id']}.")
    initiation = await _initiate_payment(contribution, event, gateway, phone_number)
    return {
        "contribution": present_contribution(contribution),
        "payment": initiation.model_dump(exclude={"details"}),
        "simulate": _should_simulate(initiation),
    }


# --- Confirmation ---
async def confirm_contribution_payment(
    contribution_id: Any,
    result: str,
    transaction_id: Optional[str] = None,
    provider_details: Optional[Dict[str, Any]] = None,
    failure_reason: Optional[str] = None,
    notifier: Optional[NotificationPort] = None,
) -> Dict[str, Any]:
    """
    Applies a payment outcome to a contribution and re-aggregates the event total.
    Replaying an outcome the contribution already has is a no-op ("changed": False).
    """
    if result not in CONFIRMATION_RESULTS:
        raise ValidationError(f'Invalid payment status "{result}"', reasons=[f"Status must be one of: {', '.join(PAYMENT_STATUSES)}"])

    contribution = await load_contribution(contribution_id)
    current_status = contribution.get("payment_status", "pending")
    changed = False

    if current_status != result:
        if result not in PAYMENT_TRANSITIONS.get(current_status, frozenset()):
            raise ConflictError(f'Cannot change payment status from "{current_status}" to "{result}"')

        now = utc_now()
        update_fields: Dict[str, Any] = {"payment_status": result, "updated_at": now}
        if transaction_id:
            update_fields["transaction_id"] = transaction_id
        if result == "completed":
            update_fields["completed_at"] = now
        if result == "failed":
            update_fields["failure_reason"] = failure_reason or "Payment processing failed"
        detail_field = _DETAIL_FIELDS.get(contribution.get("payment_method"))
        if provider_details and detail_field:
            if contribution.get(detail_field) is None:
                update_fields[detail_field] = dict(provider_details)
            else:
                for key, value in provider_details.items():
                    update_fields[f"{detail_field}.{key}"] = value

        contributions_collection = database.get_collection_or_raise(get_contributions_collection)
        updated = await database.find_one_and_update(
            contributions_collection,
            {"_id": contribution["_id"], "payment_status": current_status},
            {"$set": update_fields},
        )
        if updated is None:
            # Someone else moved it first; a concurrent identical outcome is a replay.
            contribution = await load_contribution(contribution["_id"])
            if contribution.get("payment_status") != result:
                raise ConflictError("Contribution status was changed by another request.")
        else:
            contribution = updated
            changed = True
            print(f"Contribution {contribution['_id']} payment status changed from '{current_status}' to '{result}'.")

    event, reached_target = await recalculate_event_total(contribution["event"])

    if changed and result == "completed" and event is not None:
        event = await _mark_initial_contribution(event, contribution["contributor"])

    if changed:
        await _notify_payment_outcome(notifier, contribution, event, result, reached_target)

    return {
        "contribution": present_contribution(contribution),
        "event": events_service.present_event(event) if event is not None else None,
        "changed": changed,
    }


async def _notify_payment_outcome(
    notifier: Optional[NotificationPort],
    contribution: Dict[str, Any],
    event: Optional[Dict[str, Any]],
    result: str,
    reached_target: bool,
) -> None:
    timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
    payload = {
        "contribution_id": str(contribution["_id"]),
        "event_id": str(contribution["event"]),
        "amount": contribution.get("amount"),
    }
    if result == "completed":
        await dispatch_notification(notifier, contribution.get("contributor"), notifications.PAYMENT_RECEIVED, payload, timeout)
        if event is not None:
            await dispatch_notification(
                notifier,
                event.get("creator"),
                notifications.EVENT_CONTRIBUTION,
                {
                    **payload,
                    "contributor_id": None if contribution.get("anonymous") else str(contribution.get("contributor")),
                    "message": contribution.get("message"),
                    "current_amount": event.get("current_amount"),
                    "target_amount": event.get("target_amount"),
                },
                timeout,
            )
            if reached_target:
                await dispatch_notification(
                    notifier,
                    event.get("creator"),
                    notifications.EVENT_TARGET_REACHED,
                    {"event_id": str(event["_id"]), "title": event.get("title"), "current_amount": event.get("current_amount")},
                    timeout,
                )
    elif result == "failed":
        await dispatch_notification(
            notifier,
            contribution.get("contributor"),
            notifications.PAYMENT_FAILED,
            {**payload, "reason": contribution.get("failure_reason")},
            timeout,
        )


async def handle_mpesa_callback(payload: Dict[str, Any], notifier: Optional[NotificationPort] = None) -> Dict[str, Any]:
    """
    Processes an STK push callback. M-PESA only needs an acknowledgement,
    so problems are logged and the callback is still acknowledged.
    """
    acknowledgement = {"ResultCode": 0, "ResultDesc": "Success"}
    callback = (payload.get("Body") or {}).get("stkCallback") if isinstance(payload, dict) else None
    if not callback:
        print("Error: Invalid M-PESA callback format.")
        return acknowledgement

    checkout_request_id = callback.get("CheckoutRequestID")
    try:
        contributions_collection = database.get_collection_or_raise(get_contributions_collection)
        contribution = await database.find_one(contributions_collection, {"mpesa_details.checkout_request_id": checkout_request_id})
        if contribution is None:
            print(f"Error: Contribution not found for CheckoutRequestID: {checkout_request_id}")
            return acknowledgement

        if callback.get("ResultCode") in (0, "0"):
            items = (callback.get("CallbackMetadata") or {}).get("Item") or []
            metadata = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}
            receipt = metadata.get("MpesaReceiptNumber")
            details = {"response_code": "0", "response_description": callback.get("ResultDesc")}
            if receipt:
                details["transaction_code"] = receipt
            await confirm_contribution_payment(
                contribution["_id"], "completed", transaction_id=receipt, provider_details=details, notifier=notifier,
            )
        else:
            reason = callback.get("ResultDesc") or "M-PESA payment failed"
            await confirm_contribution_payment(
                contribution["_id"],
                "failed",
                provider_details={"response_code": str(callback.get("ResultCode")), "response_description": reason},
                failure_reason=reason,
                notifier=notifier,
            )
    except GiftFundError as e:
        print(f"Warning: M-PESA callback for {checkout_request_id} not applied: {e.message}")
    except Exception as e:
        print(f"Error: M-PESA callback processing failed for {checkout_request_id}: {e}")
        traceback.print_exc()
    return acknowledgement


async def simulate_payment_confirmation(contribution_id: str, delay_seconds: float, notifier: Optional[NotificationPort] = None) -> None:
    """Background task: completes a contribution after a delay if nothing else confirmed it."""
    await asyncio.sleep(delay_seconds)
    try:
        contribution = await load_contribution(contribution_id)
        if contribution.get("payment_status") != "pending":
            print(f"Simulation: contribution {contribution_id} is already '{contribution.get('payment_status')}', skipping.")
            return
        transaction_code = f"SIM{int(utc_now().timestamp() * 1000)}"
        details = {"transaction_code": transaction_code} if contribution.get("payment_method") == "mpesa" else None
        await confirm_contribution_payment(
            contribution_id, "completed", transaction_id=transaction_code, provider_details=details, notifier=notifier,
        )
        print(f"Simulation: contribution {contribution_id} completed.")
    except Exception as e:
        print(f"Error in payment simulation for contribution {contribution_id}: {e}")
        traceback.print_exc()


async def expire_stale_contributions(older_than_minutes: Optional[int] = None, notifier: Optional[NotificationPort] = None) -> Dict[str, Any]:
    """Fails pending contributions that never got a payment outcome."""
    minutes = older_than_minutes if older_than_minutes is not None else settings.CONTRIBUTION_PENDING_EXPIRY_MINUTES
    cutoff = utc_now() - datetime.timedelta(minutes=minutes)
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    stale = await database.find_many(
        contributions_collection,
        {"payment_status": "pending", "created_at": {"$lt": cutoff}},
        {"projection": {"_id": 1}},
    )

    expired_ids: List[str] = []
    for contribution in stale:
        try:
            outcome = await confirm_contribution_payment(contribution["_id"], "failed", failure_reason="expired", notifier=notifier)
        except ConflictError:
            # Confirmed while we were expiring it.
            continue
        if outcome["changed"]:
            expired_ids.append(str(contribution["_id"]))

    print(f"Expired {len(expired_ids)} stale pending contributions older than {minutes} minutes.")
    return {"expired": len(expired_ids), "contribution_ids": expired_ids}


# --- Queries ---
async def list_contributions_for_event(
    event_id: str,
    requester: Optional[TokenData],
    access_code: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Contributions of one event. Owners and admins see every status and the payment
    details; everyone else sees completed contributions only.
    """
    event = await events_service.load_event(event_id)
    is_owner = events_service.is_owner_or_admin(event, requester)

    if event.get("visibility") == "private" and not is_owner:
        if not access_code or access_code != event.get("access_code"):
            raise AuthorizationError("Not authorized to view contributions", extra={"requires_access_code": True})

    query: Dict[str, Any] = {"event": event["_id"]}
    if not is_owner:
        query["payment_status"] = "completed"

    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    contributions = await database.find_many(contributions_collection, query, {"sort": [("created_at", DESCENDING)]})

    completed = [c for c in contributions if c.get("payment_status") == "completed"]
    total_amount = sum(float(c.get("amount") or 0) for c in completed)
    stats = {
        "total_amount": total_amount,
        "unique_contributor_count": len({str(c.get("contributor")) for c in completed}),
        "average_contribution": total_amount / len(completed) if completed else 0,
    }

    output = [present_contribution(c, include_private=is_owner) for c in contributions]
    await _attach_contributor_names(contributions, output)
    return {"count": len(output), "stats": stats, "contributions": output}


async def get_contribution(contribution_id: str, requester: TokenData) -> Dict[str, Any]:
    contribution = await load_contribution(contribution_id)
    if not requester.is_admin and not same_id(contribution.get("contributor"), requester.user_id):
        raise AuthorizationError("Not authorized to view this contribution")
    output = serialize_document(contribution)
    # Only the contributor still sees who made an anonymous contribution; admins do not.
    if contribution.get("anonymous") and not same_id(contribution.get("contributor"), requester.user_id):
        output["contributor"] = None
    await _attach_event_summaries([contribution], [output])
    return output


async def list_user_contributions(requester: TokenData, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    query = {"contributor": oid(requester.user_id, "user ID")}
    page, limit, skip = page_window(page, limit)
    contributions_collection = database.get_collection_or_raise(get_contributions_collection)
    contributions = await database.find_many(contributions_collection, query, {"sort": [("created_at", DESCENDING)], "skip": skip, "limit": limit})
    total = await database.count_documents(contributions_collection, query)

    output = [serialize_document(c) for c in contributions]
    await _attach_event_summaries(contributions, output)
    return {
        "count": len(output),
        "pagination": {"page": page, "total_pages": -(-total // limit), "total": total},
        "contributions": output,
    }

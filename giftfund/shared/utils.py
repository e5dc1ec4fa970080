# giftfund/shared/utils.py

# This file contains common utility functions used across the backend.

import secrets
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from bson import ObjectId

from .errors import ValidationError


# --- Time helpers ---
# MongoDB hands datetimes back naive (UTC), so everything we store and compare is naive UTC.
def utc_now() -> datetime:
    """Returns the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Converts an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# --- ObjectId helpers ---
def oid(id_str: Any, label: str = "ID") -> ObjectId:
    """Parses a document id, raising a ValidationError for malformed values."""
    if isinstance(id_str, ObjectId):
        return id_str
    if not isinstance(id_str, str) or not ObjectId.is_valid(id_str):
        raise ValidationError(f"Invalid {label}: {id_str}")
    return ObjectId(id_str)


def same_id(left: Any, right: Any) -> bool:
    """Compares two ids regardless of whether they are ObjectId or str."""
    if left is None or right is None:
        return False
    return str(left) == str(right)


def serialize_document(value: Any) -> Any:
    """Recursively converts ObjectId values (including '_id') into strings for JSON output."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    return value


# --- Generated codes ---
def generate_access_code() -> str:
    """Six character upper-case code handed out for private and unlisted events."""
    return secrets.token_hex(3).upper()


def generate_shareable_link() -> str:
    return secrets.token_hex(8)


def generate_order_number() -> str:
    return f"ORD-{utc_now().strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


# --- Pagination ---
def page_window(page: int, limit: int, max_limit: int = 50) -> Tuple[int, int, int]:
    """Clamps page/limit query values and returns (page, limit, skip)."""
    page_num = max(1, page)
    limit_num = min(max_limit, max(1, limit))
    return page_num, limit_num, (page_num - 1) * limit_num


def funding_progress(current_amount: Optional[float], target_amount: Optional[float]) -> float:
    """Raw funding percentage (may exceed 100). Zero when there is no target."""
    target = float(target_amount or 0)
    if target <= 0:
        return 0.0
    return (float(current_amount or 0) / target) * 100

# giftfund/features/checkout/eligibility.py

# Checkout eligibility rules for an event.
# validate_for_checkout is a pure function: it reads the event and the product
# documents it is given and never writes to them or to the database.

import datetime
from typing import Any, Dict, List, Optional

from ...config.settings import settings
from ...shared.utils import funding_progress


FUNDING_COMPLETE = "complete"
FUNDING_PARTIAL = "partial"
FUNDING_INSUFFICIENT = "insufficient"


def validate_for_checkout(
    event: Dict[str, Any],
    products_by_id: Dict[str, Dict[str, Any]],
    now: datetime.datetime,
    threshold: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Decides whether an event may be checked out.

    Args:
        event: The stored event document.
        products_by_id: Product documents keyed by their string id. Products missing
            from the mapping (deleted, or never found) count as unavailable.
        now: Naive UTC time the decision is made for.
        threshold: Partial-funding percentage, CHECKOUT_PARTIAL_FUNDING_THRESHOLD by default.

    Returns:
        A dict with is_eligible, reasons and the figures the decision was based on.
    """
    threshold = settings.CHECKOUT_PARTIAL_FUNDING_THRESHOLD if threshold is None else threshold
    current_amount = float(event.get("current_amount") or 0)
    target_amount = float(event.get("target_amount") or 0)
    progress = funding_progress(current_amount, target_amount)
    reasons: List[str] = []

    has_contributions = current_amount > 0
    if not has_contributions:
        reasons.append("Event must have at least one contribution")

    if progress >= 100:
        funding = FUNDING_COMPLETE
    elif progress >= threshold:
        funding = FUNDING_PARTIAL
    else:
        funding = FUNDING_INSUFFICIENT
        end_date = event.get("end_date")
        if end_date is None or now < end_date:
            reasons.append(f"Event must reach {threshold:g}% funding or pass its end date to be eligible")

    if event.get("status") != "active":
        reasons.append("Event must be active to proceed with checkout")

    lines = event.get("products") or []
    sellers = set()
    unavailable_products: List[Dict[str, Any]] = []
    if lines:
        # A product listed on several lines is checked against its total quantity.
        requested_by_product: Dict[str, int] = {}
        for line in lines:
            product_id = str(line.get("product"))
            requested_by_product[product_id] = requested_by_product.get(product_id, 0) + int(line.get("quantity") or 1)

        for product_id, requested in requested_by_product.items():
            product = products_by_id.get(product_id)
            if product is None:
                unavailable_products.append({"product": product_id, "name": None, "requested": requested, "available": 0})
                continue
            if product.get("seller") is not None:
                sellers.add(str(product["seller"]))
            available = int(product.get("stock") or 0) if product.get("is_active", True) else 0
            if available < requested:
                unavailable_products.append({"product": product_id, "name": product.get("name"), "requested": requested, "available": available})
        if unavailable_products:
            reasons.append("Some products are no longer available in requested quantities")
    else:
        reasons.append("Event must have products to checkout")

    return {
        "is_eligible": not reasons,
        "reasons": reasons,
        "current_amount": current_amount,
        "target_amount": target_amount,
        "progress": round(progress, 2),
        "funding": funding,
        "has_contributions": has_contributions,
        "products_available": bool(lines) and not unavailable_products,
        "unavailable_products": unavailable_products,
        "sellers": len(sellers),
    }

# giftfund/tests/test_eligibility.py

import copy
import datetime

from bson import ObjectId

from giftfund.features.checkout.eligibility import validate_for_checkout


NOW = datetime.datetime(2026, 6, 1, 12, 0, 0)
SELLER_A = ObjectId()
SELLER_B = ObjectId()
PRODUCT_1 = ObjectId()
PRODUCT_2 = ObjectId()


def build_event(current_amount, end_date=None, status="active", lines=None):
    return {
        "_id": ObjectId(),
        "status": status,
        "target_amount": 10000.0,
        "current_amount": current_amount,
        "end_date": end_date or NOW + datetime.timedelta(days=7),
        "products": lines if lines is not None else [
            {"product": PRODUCT_1, "quantity": 1, "status": "pending"},
            {"product": PRODUCT_2, "quantity": 3, "status": "pending"},
        ],
    }


def build_products(stock_2=3):
    return {
        str(PRODUCT_1): {"_id": PRODUCT_1, "name": "Kettle", "price": 4000, "stock": 5, "seller": SELLER_A, "is_active": True},
        str(PRODUCT_2): {"_id": PRODUCT_2, "name": "Mug", "price": 2000, "stock": stock_2, "seller": SELLER_B, "is_active": True},
    }


def test_partial_funding_is_eligible():
    result = validate_for_checkout(build_event(8500), build_products(), NOW)
    assert result["funding"] == "partial"
    assert result["is_eligible"] is True
    assert result["reasons"] == []
    assert result["progress"] == 85.0
    assert result["sellers"] == 2


def test_insufficient_funding_before_end_date():
    result = validate_for_checkout(build_event(3000), build_products(), NOW)
    assert result["is_eligible"] is False
    assert result["funding"] == "insufficient"
    assert any("80% funding" in reason for reason in result["reasons"])


def test_insufficient_funding_after_end_date_is_eligible():
    result = validate_for_checkout(build_event(3000, end_date=NOW - datetime.timedelta(minutes=1)), build_products(), NOW)
    assert result["funding"] == "insufficient"
    assert result["is_eligible"] is True


def test_end_date_equal_to_now_counts_as_passed():
    result = validate_for_checkout(build_event(3000, end_date=NOW), build_products(), NOW)
    assert result["is_eligible"] is True


def test_complete_funding():
    result = validate_for_checkout(build_event(12000), build_products(), NOW)
    assert result["funding"] == "complete"
    assert result["is_eligible"] is True


def test_no_contributions():
    result = validate_for_checkout(build_event(0, end_date=NOW - datetime.timedelta(days=1)), build_products(), NOW)
    assert result["has_contributions"] is False
    assert result["is_eligible"] is False
    assert "Event must have at least one contribution" in result["reasons"]


def test_event_must_be_active():
    result = validate_for_checkout(build_event(9000, status="pending"), build_products(), NOW)
    assert result["is_eligible"] is False
    assert "Event must be active to proceed with checkout" in result["reasons"]


def test_short_stock_is_reported():
    result = validate_for_checkout(build_event(9000), build_products(stock_2=2), NOW)
    assert result["is_eligible"] is False
    assert result["products_available"] is False
    assert result["unavailable_products"] == [{"product": str(PRODUCT_2), "name": "Mug", "requested": 3, "available": 2}]


def test_repeated_product_is_checked_against_total_quantity():
    lines = [
        {"product": PRODUCT_2, "quantity": 2, "status": "pending"},
        {"product": PRODUCT_2, "quantity": 2, "status": "pending"},
    ]
    result = validate_for_checkout(build_event(9000, lines=lines), build_products(stock_2=3), NOW)
    assert result["is_eligible"] is False
    assert result["unavailable_products"] == [{"product": str(PRODUCT_2), "name": "Mug", "requested": 4, "available": 3}]

    enough = validate_for_checkout(build_event(9000, lines=lines), build_products(stock_2=4), NOW)
    assert enough["is_eligible"] is True


def test_missing_and_inactive_products_are_unavailable():
    products = build_products()
    del products[str(PRODUCT_1)]
    products[str(PRODUCT_2)]["is_active"] = False
    result = validate_for_checkout(build_event(9000), products, NOW)
    assert result["is_eligible"] is False
    assert {item["product"] for item in result["unavailable_products"]} == {str(PRODUCT_1), str(PRODUCT_2)}


def test_event_without_products_is_not_eligible():
    result = validate_for_checkout(build_event(9000, lines=[]), {}, NOW)
    assert result["is_eligible"] is False
    assert result["products_available"] is False
    assert "Event must have products to checkout" in result["reasons"]


def test_validation_is_pure_and_deterministic():
    event = build_event(8500)
    products = build_products()
    event_before = copy.deepcopy(event)
    products_before = copy.deepcopy(products)

    first = validate_for_checkout(event, products, NOW)
    second = validate_for_checkout(event, products, NOW)

    assert first == second
    assert event == event_before
    assert products == products_before


def test_custom_threshold():
    result = validate_for_checkout(build_event(6000), build_products(), NOW, threshold=60)
    assert result["funding"] == "partial"
    assert result["is_eligible"] is True

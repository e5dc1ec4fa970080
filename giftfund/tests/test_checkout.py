# giftfund/tests/test_checkout.py

import asyncio
import datetime

import pytest
from pymongo.errors import PyMongoError

from giftfund.db import mongo_client
from giftfund.features.checkout import orchestration
from giftfund.models.order import ShippingDetails
from giftfund.shared import notifications
from giftfund.shared.errors import AuthorizationError, ConflictError, ValidationError
from giftfund.shared.utils import utc_now
from giftfund.tests.factories import make_event, make_product, make_user


SHIPPING = ShippingDetails(name="Amina Otieno", address="12 Riverside Drive", phone="+254712345678", city="Nairobi")


@pytest.fixture
def funded(db):
    owner = make_user(db, name="Amina")
    seller_a = make_user(db, role="seller", name="Kettle Shop")
    seller_b = make_user(db, role="seller", name="Mug House")
    kettle = make_product(db, seller_a.user_id, price=4000, stock=1, name="Kettle")
    mugs = make_product(db, seller_b.user_id, price=2000, stock=3, name="Mug")
    event_id = make_event(db, owner.user_id, [(kettle, 1), (mugs, 3)], target_amount=10000, current_amount=9000)
    return {"owner": owner, "seller_a": seller_a, "seller_b": seller_b, "kettle": kettle, "mugs": mugs, "event_id": event_id}


def checkout(funded, requester=None, notifier=None):
    return asyncio.run(orchestration.complete_event_checkout(
        str(funded["event_id"]), requester or funded["owner"], SHIPPING, notifier=notifier,
    ))


def test_checkout_creates_one_order_per_seller(db, funded, notifier):
    result = checkout(funded, notifier=notifier)

    assert result["summary"] == {"total_orders": 2, "total_amount": 10000.0, "unique_sellers": 2}
    assert result["event"]["status"] == "completed"
    assert db.products.find_one({"_id": funded["kettle"]})["stock"] == 0
    assert db.products.find_one({"_id": funded["mugs"]})["stock"] == 0

    orders = list(db.orders.find())
    assert len(orders) == 2
    by_seller = {str(order["seller"]): order for order in orders}
    mug_order = by_seller[funded["seller_b"].user_id]
    assert mug_order["total_amount"] == 6000
    assert mug_order["products"][0]["price"] == 2000
    assert mug_order["products"][0]["quantity"] == 3
    assert mug_order["order_progress"] == "pending"
    assert mug_order["timeline"][0]["status"] == "pending"
    assert mug_order["shipping_details"]["country"] == "Kenya"
    assert str(mug_order["buyer"]) == funded["owner"].user_id

    event = db.events.find_one({"_id": funded["event_id"]})
    assert event["status"] == "completed"
    assert event["completed_at"] is not None
    assert sorted(event["orders"]) == sorted(order["_id"] for order in orders)
    assert {line["status"] for line in event["products"]} == {"purchased"}
    assert "checkout_lock" not in event

    assert notifier.types().count(notifications.NEW_ORDER) == 2
    assert notifications.EVENT_CHECKOUT_COMPLETED in notifier.types()
    assert {order["seller_summary"]["name"] for order in result["orders"]} == {"Kettle Shop", "Mug House"}


def test_second_checkout_is_rejected(db, funded):
    checkout(funded)
    with pytest.raises(ConflictError):
        checkout(funded)
    assert db.orders.count_documents({}) == 2


def test_live_claim_blocks_checkout(db, funded):
    db.events.update_one({"_id": funded["event_id"]}, {"$set": {"checkout_lock": "other", "checkout_started_at": utc_now()}})

    with pytest.raises(ConflictError) as excinfo:
        checkout(funded)
    assert "in progress" in excinfo.value.message
    assert db.orders.count_documents({}) == 0
    assert db.products.find_one({"_id": funded["kettle"]})["stock"] == 1


def test_stale_claim_is_taken_over(db, funded):
    stale = utc_now() - datetime.timedelta(hours=1)
    db.events.update_one({"_id": funded["event_id"]}, {"$set": {"checkout_lock": "crashed", "checkout_started_at": stale}})

    result = checkout(funded)
    assert result["event"]["status"] == "completed"


def test_stock_race_rolls_everything_back(db, funded, monkeypatch):
    original_load = orchestration._load_products

    async def load_then_sell_out(event):
        products = await original_load(event)
        # Another buyer takes two mugs after the eligibility check read the stock.
        db.products.update_one({"_id": funded["mugs"]}, {"$inc": {"stock": -2}})
        return products

    monkeypatch.setattr(orchestration, "_load_products", load_then_sell_out)

    with pytest.raises(ConflictError):
        checkout(funded)

    event = db.events.find_one({"_id": funded["event_id"]})
    assert db.orders.count_documents({}) == 0
    assert db.products.find_one({"_id": funded["kettle"]})["stock"] == 1
    assert db.products.find_one({"_id": funded["mugs"]})["stock"] == 1
    assert event["status"] == "active"
    assert event.get("checkout_lock") is None

    # Once the mugs are back in stock the same event checks out.
    db.products.update_one({"_id": funded["mugs"]}, {"$set": {"stock": 3}})
    monkeypatch.setattr(orchestration, "_load_products", original_load)
    assert checkout(funded)["summary"]["total_orders"] == 2


def test_orders_keep_the_price_paid(db, funded):
    db.products.update_one({"_id": funded["kettle"]}, {"$set": {"price": 4500}})
    checkout(funded)
    db.products.update_one({"_id": funded["kettle"]}, {"$set": {"price": 9999}})

    kettle_order = db.orders.find_one({"seller": db.products.find_one({"_id": funded["kettle"]})["seller"]})
    assert kettle_order["products"][0]["price"] == 4500
    assert kettle_order["total_amount"] == 4500


def test_ineligible_event_is_rejected_with_reasons(db, funded):
    db.events.update_one({"_id": funded["event_id"]}, {"$set": {"current_amount": 3000}})

    with pytest.raises(ValidationError) as excinfo:
        checkout(funded)
    assert excinfo.value.message == "Event is not eligible for checkout"
    assert any("80% funding" in reason for reason in excinfo.value.reasons)
    assert excinfo.value.extra["details"]["funding"] == "insufficient"
    assert db.orders.count_documents({}) == 0


def test_only_owner_or_admin_can_checkout(db, funded):
    stranger = make_user(db)
    with pytest.raises(AuthorizationError):
        checkout(funded, requester=stranger)

    admin = make_user(db, role="admin")
    assert checkout(funded, requester=admin)["summary"]["total_orders"] == 2


def test_eligibility_report(db, funded):
    report = asyncio.run(orchestration.check_checkout_eligibility(str(funded["event_id"]), funded["owner"]))
    assert report["is_eligible"] is True
    assert report["funding"] == "partial"
    assert report["sellers"] == 2

    with pytest.raises(AuthorizationError):
        asyncio.run(orchestration.check_checkout_eligibility(str(funded["event_id"]), make_user(db)))


def test_unit_of_work_compensates_in_reverse():
    calls = []

    def record(name):
        async def action():
            calls.append(name)
        return action

    async def run():
        async with orchestration.CheckoutUnitOfWork() as uow:
            uow.on_rollback(record("first"))
            uow.on_rollback(record("second"))
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(run())
    assert calls == ["second", "first"]


def test_repeated_product_lines_are_not_eligible(db):
    owner = make_user(db)
    seller = make_user(db, role="seller")
    mugs = make_product(db, seller.user_id, price=1000, stock=3, name="Mug")
    event_id = make_event(db, owner.user_id, [(mugs, 2), (mugs, 2)], target_amount=4000, current_amount=4000)

    with pytest.raises(ValidationError):
        asyncio.run(orchestration.complete_event_checkout(str(event_id), owner, SHIPPING))
    assert db.products.find_one({"_id": mugs})["stock"] == 3
    assert db.orders.count_documents({}) == 0


# --- Concurrency ---
def run_together(*calls):
    async def run():
        return await asyncio.gather(*calls, return_exceptions=True)
    return asyncio.run(run())


def test_concurrent_checkouts_of_one_event(db, funded):
    event_id = str(funded["event_id"])
    results = run_together(
        orchestration.complete_event_checkout(event_id, funded["owner"], SHIPPING),
        orchestration.complete_event_checkout(event_id, funded["owner"], SHIPPING),
    )

    winners = [result for result in results if isinstance(result, dict)]
    losers = [result for result in results if not isinstance(result, dict)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], (ConflictError, ValidationError))
    assert db.orders.count_documents({}) == 2
    assert db.products.find_one({"_id": funded["kettle"]})["stock"] == 0
    assert db.products.find_one({"_id": funded["mugs"]})["stock"] == 0


def test_events_competing_for_the_same_stock(db):
    seller = make_user(db, role="seller")
    lamp = make_product(db, seller.user_id, price=1000, stock=3, name="Lamp")
    first_owner = make_user(db)
    second_owner = make_user(db)
    first = make_event(db, first_owner.user_id, [(lamp, 2)], target_amount=2000, current_amount=2000)
    second = make_event(db, second_owner.user_id, [(lamp, 2)], target_amount=2000, current_amount=2000)

    results = run_together(
        orchestration.complete_event_checkout(str(first), first_owner, SHIPPING),
        orchestration.complete_event_checkout(str(second), second_owner, SHIPPING),
    )

    winners = [result for result in results if isinstance(result, dict)]
    losers = [result for result in results if not isinstance(result, dict)]
    assert len(winners) == 1
    assert isinstance(losers[0], (ConflictError, ValidationError))
    assert db.products.find_one({"_id": lamp})["stock"] == 1
    assert db.orders.count_documents({}) == 1

    statuses = sorted(db.events.find_one({"_id": event_id})["status"] for event_id in (first, second))
    assert statuses == ["active", "completed"]
    assert all(db.events.find_one({"_id": event_id}).get("checkout_lock") is None for event_id in (first, second))


# --- Transactions ---
class RecordingSession:
    def __init__(self):
        self.calls = []

    def start_transaction(self):
        self.calls.append("start_transaction")

    def commit_transaction(self):
        self.calls.append("commit_transaction")

    def abort_transaction(self):
        self.calls.append("abort_transaction")

    def end_session(self):
        self.calls.append("end_session")


@pytest.fixture
def session(monkeypatch):
    recording = RecordingSession()

    async def start_session():
        return recording

    monkeypatch.setattr(mongo_client, "start_session", start_session)
    return recording


def test_transaction_commits_on_success(session):
    compensations = []

    async def compensate():
        compensations.append("ran")

    async def run():
        async with orchestration.CheckoutUnitOfWork(use_transaction=True) as uow:
            assert uow.session is session
            uow.on_rollback(compensate)

    asyncio.run(run())
    assert session.calls == ["start_transaction", "commit_transaction", "end_session"]
    assert compensations == []


def test_transaction_aborts_on_failure(session):
    compensations = []

    async def compensate():
        compensations.append("ran")

    async def run():
        async with orchestration.CheckoutUnitOfWork(use_transaction=True) as uow:
            uow.on_rollback(compensate)
            raise ConflictError("stock gone")

    with pytest.raises(ConflictError):
        asyncio.run(run())
    assert session.calls == ["start_transaction", "abort_transaction", "end_session"]
    assert compensations == []


def test_transient_transaction_error_is_a_conflict(db, funded, monkeypatch):
    async def conflicting_claim(event, claim_token, now, session):
        raise PyMongoError("WriteConflict", error_labels=["TransientTransactionError"])

    monkeypatch.setattr(orchestration, "_claim_event", conflicting_claim)
    with pytest.raises(ConflictError):
        checkout(funded)
    assert db.orders.count_documents({}) == 0

# giftfund/tests/test_events_api.py

# End-to-end checks through the FastAPI app: auth, response envelopes and error format.

import datetime

from bson import ObjectId

from giftfund.shared import notifications
from giftfund.shared.utils import utc_now
from giftfund.tests.factories import add_contribution, auth_header, make_event, make_product, make_user


def event_body(product_id, **overrides):
    now = datetime.datetime.now(datetime.timezone.utc)
    body = {
        "title": "Amina's 30th",
        "description": "Help me furnish the new flat",
        "event_type": "birthday",
        "event_date": (now + datetime.timedelta(days=10)).isoformat(),
        "end_date": (now + datetime.timedelta(days=20)).isoformat(),
        "visibility": "public",
        "products": [{"product": str(product_id), "quantity": 2}],
    }
    body.update(overrides)
    return body


def test_root(client):
    assert client.get("/").json() == {"message": "GiftFund Backend is running."}


def test_create_event(client, db):
    owner = make_user(db)
    seller = make_user(db, role="seller")
    product_id = make_product(db, seller.user_id, price=1500)

    response = client.post("/api/events", json=event_body(product_id), headers=auth_header(owner))

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert data["target_amount"] == 3000
    assert data["creator"] == owner.user_id
    assert data["progress_percentage"] == 0
    assert data["products"][0]["product_details"]["name"] == "Gift"
    assert db.events.count_documents({}) == 1


def test_create_event_requires_token(client, db):
    response = client.post("/api/events", json=event_body(ObjectId()))
    assert response.status_code == 401
    assert response.json()["success"] is False

    response = client.post("/api/events", json=event_body(ObjectId()), headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_create_event_validation_errors(client, db):
    owner = make_user(db)
    past = (datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=2)).isoformat()

    response = client.post("/api/events", json=event_body(ObjectId(), event_date=past, products=[]), headers=auth_header(owner))
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "Event date must not be in the past" in body["reasons"]
    assert "At least one product must be selected for the event" in body["reasons"]

    # Malformed bodies are reported in the same shape.
    response = client.post("/api/events", json={"title": "x"}, headers=auth_header(owner))
    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"
    assert response.json()["reasons"]


def test_other_event_type_needs_custom_type(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    response = client.post("/api/events", json=event_body(product_id, event_type="other"), headers=auth_header(owner))
    assert response.status_code == 400
    assert 'Custom event type is required when event type is "other"' in response.json()["reasons"]


def test_private_event_access(client, db):
    owner = make_user(db)
    stranger = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], visibility="private", access_code="A1B2C3")

    denied = client.get(f"/api/events/{event_id}", headers=auth_header(stranger))
    assert denied.status_code == 403
    assert denied.json()["requires_access_code"] is True

    allowed = client.get(f"/api/events/{event_id}", params={"access_code": "A1B2C3"}, headers=auth_header(stranger))
    assert allowed.status_code == 200
    assert "access_code" not in allowed.json()["data"]

    as_owner = client.get(f"/api/events/{event_id}", headers=auth_header(owner))
    assert as_owner.json()["data"]["access_code"] == "A1B2C3"


def test_unknown_event_is_404(client, db):
    response = client.get(f"/api/events/{ObjectId()}")
    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Event not found"}

    assert client.get("/api/events/not-an-id").status_code == 400


def test_public_listing_and_my_events(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    make_event(db, owner.user_id, [(product_id, 1)])
    make_event(db, owner.user_id, [(product_id, 1)], visibility="private", access_code="ZZZ999")
    make_event(db, owner.user_id, [(product_id, 1)], status="cancelled")

    listing = client.get("/api/events")
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total_count"] == 1

    assert client.get("/api/events", params={"visibility": "private"}).status_code == 403

    mine = client.get("/api/events/my-events", headers=auth_header(owner))
    assert mine.json()["pagination"]["total_count"] == 3
    assert len(mine.json()["data"]) == 3

    cancelled = client.get("/api/events/my-events", params={"status": "cancelled"}, headers=auth_header(owner))
    assert len(cancelled.json()["data"]) == 1


def test_status_update_notifies_creator(client, db, notifier):
    owner = make_user(db)
    admin = make_user(db, role="admin")
    product_id = make_product(db, make_user(db, role="seller").user_id)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], status="active", current_amount=500)

    response = client.put(f"/api/events/{event_id}/status", json={"status": "cancelled"}, headers=auth_header(admin))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "cancelled"
    assert notifier.types() == [notifications.EVENT_STATUS_CHANGED]

    illegal = client.put(f"/api/events/{event_id}/status", json={"status": "completed"}, headers=auth_header(owner))
    assert illegal.status_code == 400
    assert illegal.json()["message"] == 'Cannot change status from "cancelled" to "completed"'

    reactivated = client.put(f"/api/events/{event_id}/status", json={"status": "active"}, headers=auth_header(owner))
    assert reactivated.json()["data"]["status"] == "active"
    assert notifier.types() == [notifications.EVENT_STATUS_CHANGED]


def test_delete_without_money_removes_event(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], status="pending")

    response = client.delete(f"/api/events/{event_id}", headers=auth_header(owner))
    assert response.status_code == 200
    assert response.json()["data"]["outcome"] == "deleted"
    assert db.events.count_documents({}) == 0


def test_delete_with_money_cancels_event(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], status="active", current_amount=1000)
    add_contribution(db, event_id, make_user(db).user_id, 1000)

    response = client.delete(f"/api/events/{event_id}", headers=auth_header(owner))
    assert response.status_code == 200
    assert response.json()["data"]["outcome"] == "cancelled"
    assert db.events.find_one({"_id": event_id})["status"] == "cancelled"
    assert db.contributions.count_documents({}) == 1

    other = make_user(db)
    assert client.delete(f"/api/events/{event_id}", headers=auth_header(other)).status_code == 403


def test_contribute_then_confirm_over_http(client, db, notifier):
    owner = make_user(db)
    contributor = make_user(db, name="Wanjiru")
    admin = make_user(db, role="admin")
    product_id = make_product(db, make_user(db, role="seller").user_id, price=2000)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], target_amount=2000, status="pending")

    created = client.post(
        "/api/contributions",
        json={"event_id": str(event_id), "amount": 2000, "payment_method": "mpesa", "phone_number": "+254712345678"},
        headers=auth_header(contributor),
    )
    assert created.status_code == 201
    contribution_id = created.json()["data"]["contribution"]["_id"]
    assert "simulate" not in created.json()["data"]

    forbidden = client.put(f"/api/contributions/{contribution_id}/status", json={"payment_status": "completed"}, headers=auth_header(contributor))
    assert forbidden.status_code == 403

    confirmed = client.put(
        f"/api/contributions/{contribution_id}/status",
        json={"payment_status": "completed", "transaction_id": "QK7"},
        headers=auth_header(admin),
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["data"]["event"]["current_amount"] == 2000
    assert confirmed.json()["data"]["event"]["status"] == "active"
    assert notifications.EVENT_TARGET_REACHED in notifier.types()

    listing = client.get(f"/api/contributions/event/{event_id}")
    assert listing.json()["count"] == 1
    assert listing.json()["stats"]["total_amount"] == 2000

    mine = client.get("/api/contributions/my-contributions", headers=auth_header(contributor))
    assert mine.json()["data"][0]["event_summary"]["_id"] == str(event_id)


def test_bad_phone_over_http(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id)
    event_id = make_event(db, owner.user_id, [(product_id, 1)])

    response = client.post(
        "/api/contributions",
        json={"event_id": str(event_id), "amount": 100, "payment_method": "mpesa", "phone_number": "12345"},
        headers=auth_header(make_user(db)),
    )
    assert response.status_code == 400
    assert db.contributions.count_documents({}) == 0


def test_mpesa_callback_is_always_acknowledged(client, db):
    response = client.post("/api/contributions/mpesa-callback", json={"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_missing", "ResultCode": 0}}})
    assert response.status_code == 200
    assert response.json() == {"ResultCode": 0, "ResultDesc": "Success"}


def test_checkout_over_http(client, db, notifier):
    owner = make_user(db)
    seller = make_user(db, role="seller")
    product_id = make_product(db, seller.user_id, price=3000, stock=1)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], target_amount=3000, current_amount=2500)
    shipping = {"name": "Amina Otieno", "address": "12 Riverside Drive", "phone": "+254712345678"}

    eligibility = client.get(f"/api/events/{event_id}/checkout/eligibility", headers=auth_header(owner))
    assert eligibility.json()["data"]["is_eligible"] is True

    response = client.post(f"/api/events/{event_id}/checkout", json={"shipping_details": shipping}, headers=auth_header(owner))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["summary"]["total_orders"] == 1
    assert data["orders"][0]["shipping_details"]["country"] == "Kenya"

    again = client.post(f"/api/events/{event_id}/checkout", json={"shipping_details": shipping}, headers=auth_header(owner))
    assert again.status_code == 409

    order_id = data["orders"][0]["_id"]
    progressed = client.put(f"/api/orders/{order_id}/progress", json={"progress": "processing"}, headers=auth_header(seller))
    assert progressed.status_code == 200
    assert progressed.json()["data"]["order_progress"] == "processing"

    orders = client.get(f"/api/orders/event/{event_id}", headers=auth_header(owner))
    assert [order["_id"] for order in orders.json()["data"]] == [order_id]


def test_ineligible_checkout_over_http(client, db):
    owner = make_user(db)
    product_id = make_product(db, make_user(db, role="seller").user_id, price=3000)
    event_id = make_event(db, owner.user_id, [(product_id, 1)], target_amount=3000, current_amount=0, end_date=utc_now() + datetime.timedelta(days=3))
    shipping = {"name": "Amina Otieno", "address": "12 Riverside Drive", "phone": "+254712345678"}

    response = client.post(f"/api/events/{event_id}/checkout", json={"shipping_details": shipping}, headers=auth_header(owner))
    assert response.status_code == 400
    assert "Event must have at least one contribution" in response.json()["reasons"]

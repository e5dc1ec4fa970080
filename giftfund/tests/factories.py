# giftfund/tests/factories.py

# Test helpers: principals and bearer tokens, document factories and fake notifiers.

import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from giftfund.features.user.auth.security import create_access_token
from giftfund.models.auth import TokenData
from giftfund.models.event import Event, EventProductLine
from giftfund.shared.utils import utc_now


class RecordingNotifier:
    """Keeps every notification in memory so tests can assert on them."""

    def __init__(self):
        self.sent: List[Tuple[Any, str, Dict[str, Any]]] = []

    async def notify(self, recipient_id, notification_type, payload):
        self.sent.append((recipient_id, notification_type, payload))

    def types(self) -> List[str]:
        return [notification_type for _, notification_type, _ in self.sent]


class FailingNotifier:
    async def notify(self, recipient_id, notification_type, payload):
        raise RuntimeError("notification channel down")


# --- Principals ---
def principal(user_id: Any, role: str = "buyer") -> TokenData:
    return TokenData(
        sub=str(user_id),
        user_id=str(user_id),
        exp=datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(minutes=30),
        role=role,
    )


def make_user(db, role: str = "buyer", name: str = "Test User", email: Optional[str] = None, phone_number: Optional[str] = None) -> TokenData:
    user_id = db.users.insert_one({"name": name, "email": email, "phone_number": phone_number, "role": role}).inserted_id
    return principal(user_id, role)


def auth_header(user: TokenData) -> Dict[str, str]:
    token = create_access_token({"sub": user.sub, "user_id": user.user_id, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


# --- Documents ---
def make_product(db, seller_id: Any, price: float = 1000, stock: int = 10, name: str = "Gift", is_active: bool = True) -> ObjectId:
    return db.products.insert_one({
        "name": name,
        "price": price,
        "stock": stock,
        "seller": ObjectId(str(seller_id)),
        "is_active": is_active,
    }).inserted_id


def make_event(
    db,
    creator_id: Any,
    lines: List[Tuple[ObjectId, int]],
    target_amount: float = 10000,
    current_amount: float = 0,
    status: str = "active",
    end_date: Optional[datetime.datetime] = None,
    visibility: str = "public",
    access_code: Optional[str] = None,
) -> ObjectId:
    now = utc_now()
    event = Event(
        creator=ObjectId(str(creator_id)),
        title="Birthday",
        description="Gifts for a birthday",
        event_type="birthday",
        event_date=now + datetime.timedelta(days=1),
        end_date=end_date or now + datetime.timedelta(days=30),
        visibility=visibility,
        access_code=access_code,
        status=status,
        target_amount=target_amount,
        current_amount=current_amount,
        products=[EventProductLine(product=product_id, quantity=quantity) for product_id, quantity in lines],
    )
    return db.events.insert_one(event.model_dump(by_alias=True, exclude={"id"})).inserted_id


def add_contribution(db, event_id: ObjectId, contributor_id: Any, amount: float, status: str = "completed", anonymous: bool = False, method: str = "mpesa") -> ObjectId:
    now = utc_now()
    return db.contributions.insert_one({
        "event": event_id,
        "contributor": ObjectId(str(contributor_id)),
        "amount": amount,
        "message": None,
        "anonymous": anonymous,
        "payment_method": method,
        "payment_status": status,
        "transaction_id": None,
        "failure_reason": None,
        "mpesa_details": {"phone_number": "+254712345678"} if method == "mpesa" else None,
        "card_details": None,
        "paypal_details": None,
        "metadata": {},
        "created_at": now,
        "updated_at": now,
        "completed_at": now if status == "completed" else None,
    }).inserted_id


def completed_sum(db, event_id: ObjectId) -> float:
    return sum(c["amount"] for c in db.contributions.find({"event": event_id, "payment_status": "completed"}))

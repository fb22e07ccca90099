"""
Customized (made-to-order) orders: the buyer uploads artwork and dimensions,
an admin quotes a price and moves the order along, and every effective change
is announced to the buyer.
"""
import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from config import Settings
from database import CUSTOMIZED_ORDER, create_document, get_documents, now_utc, oid
from errors import NotFound, ValidationError
from mailer import custom_order_email, format_price, long_date
from notifications import NotificationService, announce
from orders import TransitionPolicy
from schemas import CustomizedOrder, OrderUpdate
from storage import is_data_url, successful_urls, upload_batch
from users import UserService

logger = logging.getLogger(__name__)


def any_status(current: Optional[str], new: str) -> None:
    if not isinstance(new, str) or not new.strip():
        raise ValidationError("Status cannot be empty")


def _dimension(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number or None


def _day(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # ISO strings; a JS toISOString() value starts with the calendar day
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError("expectedDelivery must be an ISO date")


class CustomOrderService:
    def __init__(self, db: Database, users: UserService, store, notifications: NotificationService, mailer,
                 settings: Settings, transition_policy: Optional[TransitionPolicy] = None):
        self.db = db
        self.users = users
        self.store = store
        self.notifications = notifications
        self.mailer = mailer
        self.settings = settings
        self.transition_policy = transition_policy or any_status

    @property
    def collection(self):
        return self.db[CUSTOMIZED_ORDER]

    def get(self, order_id) -> Dict[str, Any]:
        order = self.collection.find_one({"_id": oid(order_id)})
        if not order:
            raise NotFound("Not found")
        return order

    def list_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, CUSTOMIZED_ORDER, sort=[("createdAt", -1)])

    def list_for_user(self, uid: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, CUSTOMIZED_ORDER, {"uid": uid}, sort=[("createdAt", -1)])

    def create(self, uid: str, height: Any = None, length: Any = None, material: Optional[str] = None,
               notes: Optional[str] = None, images: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        user = self.users.find(uid)
        if not user:
            raise NotFound("User profile not found")

        payloads = [(img.get("base64"), img.get("originalName")) for img in images or []
                    if isinstance(img, dict) and is_data_url(img.get("base64"))]
        results = upload_batch(self.store, payloads, folder="customized")

        order = CustomizedOrder(
            uid=uid,
            name=user.get("name"),
            email=user.get("email"),
            phone=user.get("phone"),
            address=user.get("address"),
            city=user.get("city"),
            state=user.get("state"),
            pincode=user.get("pincode"),
            images=successful_urls(results),
            height=_dimension(height),
            length=_dimension(length),
            material=material,
            notes=notes,
            price=None,
            payment="COD",
            payment_status="pending",
            status="pending",
        )
        doc = create_document(self.db, CUSTOMIZED_ORDER, order)
        logger.info("Created custom order %s for %s with %d/%d images",
                    doc["_id"], uid, len(doc["images"]), len(payloads))
        return doc

    def update(self, order_id, price: Any = None, status: Optional[str] = None,
               expected_delivery: Any = None) -> Dict[str, Any]:
        order = self.get(order_id)
        updates: Dict[str, Any] = {}
        changes: List[str] = []

        if price is not None:
            try:
                price = float(price)
            except (TypeError, ValueError):
                raise ValidationError("Price must be a number")
            if price < 0:
                raise ValidationError("Price cannot be negative")
            if order.get("price") != price:
                updates["price"] = price
                changes.append(f"Price updated to ₹{format_price(price)}")

        if status and status != order.get("status"):
            self.transition_policy(order.get("status"), status)
            updates["status"] = status
            changes.append(f"Status changed to {status}")

        if expected_delivery:
            expected_delivery = _day(expected_delivery)
            current = order.get("expectedDelivery")
            if current is None or current.date() != expected_delivery:
                updates["expectedDelivery"] = datetime.combine(expected_delivery, time.min)
                changes.append(f"Expected delivery set to {long_date(updates['expectedDelivery'])}")

        if not changes:
            return order

        updates["updatedAt"] = now_utc()
        self.collection.update_one({"_id": order["_id"]}, {"$set": updates})
        order.update(updates)
        self._announce(order, changes)
        return order

    def confirm_payment(self, order_id, payment: Optional[str] = None,
                        payment_status: Optional[str] = None) -> Dict[str, Any]:
        order = self.get(order_id)
        updates = {
            "payment": payment or "COD",
            "paymentStatus": payment_status or "completed",
            "status": "confirmed",
            "updatedAt": now_utc(),
        }
        self.collection.update_one({"_id": order["_id"]}, {"$set": updates})
        order.update(updates)
        return order

    def _announce(self, order: Dict[str, Any], changes: List[str]) -> None:
        price = order.get("price")
        price_text = f"₹{format_price(price)}" if price is not None else "Not set"
        announce(
            self.notifications, self.mailer, order["uid"],
            title="Custom Order Update",
            message=f"Your custom order is now {price_text} - Status: {order.get('status')}",
            data=OrderUpdate(order_id=str(order["_id"]), order_type="customized", status=order.get("status"),
                             price=price, expected_delivery=order.get("expectedDelivery"), changes=changes),
            email=order.get("email"),
            subject=f"Update on Your Custom Order #{str(order['_id'])[-6:]}",
            html_body=custom_order_email(order, changes, self.settings.frontend_url),
        )

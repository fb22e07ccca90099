"""
Standard (catalog) order lifecycle.

    placeOrder            -> status "pending"; COD orders are paid on placement,
                             ONLINE orders wait for payment verification
    createGatewayOrder    -> registers the order with Razorpay (ONLINE + pending only)
    verifyPayment         -> HMAC check of the checkout signature on an unpaid order; a mismatch is
                             recorded as paymentStatus "failed", not raised
    setStatus             -> admin overwrite, gated only by the transition policy
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pymongo.database import Database

from catalog import Catalog
from config import Settings
from database import ORDER, create_document, get_documents, now_utc, oid
from errors import Conflict, InvalidState, NotFound, ValidationError
from gateway import signature_matches
from mailer import order_status_email
from notifications import NotificationService, announce
from schemas import Buyer, GatewayRef, Order, OrderItem, OrderUpdate, ProductOrderDetails

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered")
PAYMENT_METHODS = ("COD", "ONLINE")
CURRENCY = "INR"

TransitionPolicy = Callable[[Optional[str], str], None]


def enum_policy(allowed) -> TransitionPolicy:
    """Accept any move into a known status; backward moves are allowed on purpose."""
    def check(current: Optional[str], new: str) -> None:
        if new not in allowed:
            raise ValidationError(f"Invalid status: {new}")
    return check


@dataclass
class PaymentOutcome:
    success: bool
    order: Dict[str, Any]


def _price(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError("Item price must be a number")


def _qty(value: Any) -> int:
    try:
        qty = int(value or 1)
    except (TypeError, ValueError):
        raise ValidationError("Item qty must be a whole number")
    if qty < 1:
        raise ValidationError("Item qty must be at least 1")
    return qty


class OrderService:
    def __init__(self, db: Database, catalog: Catalog, gateway, notifications: NotificationService, mailer,
                 settings: Settings, transition_policy: Optional[TransitionPolicy] = None):
        self.db = db
        self.catalog = catalog
        self.gateway = gateway
        self.notifications = notifications
        self.mailer = mailer
        self.settings = settings
        self.transition_policy = transition_policy or enum_policy(ORDER_STATUSES)

    @property
    def collection(self):
        return self.db[ORDER]

    def get(self, order_id) -> Dict[str, Any]:
        order = self.collection.find_one({"_id": oid(order_id)})
        if not order:
            raise NotFound("Order not found")
        return order

    def list_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, ORDER, sort=[("createdAt", -1)])

    def list_for_user(self, uid: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, ORDER, {"userId": uid}, sort=[("createdAt", -1)])

    def place_order(self, uid: str, buyer: Dict[str, Any], items: Any, payment: Optional[str] = None) -> Dict[str, Any]:
        if not isinstance(items, list):
            raise ValidationError("Order items must be a list")
        payment = payment or "COD"
        if payment not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment}")

        lines = [self._snapshot(item) for item in items]
        total = sum(line.price * line.qty for line in lines)
        contact = Buyer(**{k: buyer.get(k) for k in Buyer.model_fields})
        order = Order(
            user_id=uid,
            **contact.model_dump(),
            product=ProductOrderDetails(items=lines, total=total),
            payment=payment,
            payment_status="completed" if payment == "COD" else "pending",
            status="pending",
        )
        doc = create_document(self.db, ORDER, order)
        logger.info("Placed %s order %s for %s: %d items, total %s", payment, doc["_id"], uid, len(lines), total)
        return doc

    def create_gateway_order(self, order_id) -> Dict[str, Any]:
        order = self.get(order_id)
        if order.get("payment") != "ONLINE" or order.get("paymentStatus") != "pending":
            raise InvalidState("Order is not awaiting online payment")

        amount = int(round(float(order["product"]["total"]) * 100))
        gateway_order_id = self.gateway.create_order(amount, CURRENCY, str(order["_id"]))
        ref = GatewayRef(order_id=gateway_order_id).model_dump(by_alias=True)
        self.collection.update_one({"_id": order["_id"]}, {"$set": {"razorpay": ref, "updatedAt": now_utc()}})

        return {
            "orderId": str(order["_id"]),
            "gatewayOrderId": gateway_order_id,
            "amount": amount,
            "currency": CURRENCY,
            "key": self.settings.razorpay_key_id,
            "prefill": {
                "name": order.get("name"),
                "email": order.get("email"),
                "contact": order.get("phone"),
            },
        }

    def verify_payment(self, order_id, gateway_order_id: str, payment_id: str, signature: str) -> PaymentOutcome:
        order = self.get(order_id)
        if order.get("payment") != "ONLINE":
            raise InvalidState("Order is not an online payment order")
        if order.get("paymentStatus") == "completed":
            raise InvalidState("Order is already paid")
        stored = (order.get("razorpay") or {}).get("orderId")
        if not stored or stored != gateway_order_id:
            raise Conflict("Gateway order id does not match this order")

        if signature_matches(self.settings.razorpay_key_secret, gateway_order_id, payment_id or "", signature):
            updates = {
                "razorpay": GatewayRef(order_id=gateway_order_id, payment_id=payment_id,
                                       signature=signature).model_dump(by_alias=True),
                "paymentStatus": "completed",
            }
            success = True
            logger.info("Payment %s verified for order %s", payment_id, order["_id"])
        else:
            updates = {"paymentStatus": "failed"}
            success = False
            logger.warning("Payment signature mismatch for order %s", order["_id"])

        updates["updatedAt"] = now_utc()
        self.collection.update_one({"_id": order["_id"]}, {"$set": updates})
        order.update(updates)
        return PaymentOutcome(success=success, order=order)

    def set_status(self, order_id, status: str) -> Dict[str, Any]:
        order = self.get(order_id)
        previous = order.get("status")
        self.transition_policy(previous, status)
        if status == previous:
            return order

        self.collection.update_one({"_id": order["_id"]}, {"$set": {"status": status, "updatedAt": now_utc()}})
        order["status"] = status
        announce(
            self.notifications, self.mailer, order["userId"],
            title="Order Update",
            message=f"Your order is now {status}",
            data=OrderUpdate(order_id=str(order["_id"]), order_type="product", status=status,
                             changes=[f"Status changed to {status}"]),
            email=order.get("email"),
            subject=f"Update on Your Order #{str(order['_id'])[-6:]}",
            html_body=order_status_email(order, self.settings.frontend_url),
        )
        return order

    def _snapshot(self, item: Any) -> OrderItem:
        if not isinstance(item, dict):
            raise ValidationError("Each order item must be an object")
        product_id = item.get("productId")
        product = None
        if not item.get("name") or not item.get("image") or item.get("price") in (None, ""):
            product = self.catalog.find(product_id)
        product = product or {}
        images = product.get("images") or []

        price = item.get("price")
        if price in (None, ""):
            price = product.get("price", 0)
        return OrderItem(
            product_id=str(product_id) if product_id else None,
            name=item.get("name") or product.get("name"),
            price=_price(price),
            qty=_qty(item.get("qty")),
            image=item.get("image") or (images[0] if images else None),
        )

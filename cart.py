"""
Per-user cart embedded in the user document, one line per productId.
"""
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import USER, now_utc
from errors import NotFound, ValidationError
from schemas import CartItem


def clamp_qty(qty: Any) -> int:
    try:
        qty = int(qty)
    except (TypeError, ValueError):
        return 1
    return qty if qty > 0 else 1


class CartService:
    def __init__(self, db: Database):
        self.db = db

    def _user(self, uid: str) -> Dict[str, Any]:
        user = self.db[USER].find_one({"uid": uid})
        if not user:
            raise NotFound("User not found")
        return user

    def _save(self, user: Dict[str, Any], cart: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        self.db[USER].update_one({"_id": user["_id"]}, {"$set": {"cart": cart, "updatedAt": now_utc()}})
        return cart

    def get(self, uid: str) -> List[Dict[str, Any]]:
        return self._user(uid).get("cart") or []

    def add_item(self, uid: str, product_id: str, name: str, price: Any,
                 image: Optional[str] = None, qty: Any = 1) -> List[Dict[str, Any]]:
        if not product_id or not name or price in (None, ""):
            raise ValidationError("Missing required fields")
        try:
            price = float(price)
        except (TypeError, ValueError):
            raise ValidationError("Price must be a number")
        qty = clamp_qty(qty)

        user = self._user(uid)
        cart = user.get("cart") or []
        for line in cart:
            if line.get("productId") == product_id:
                line["qty"] = line.get("qty", 1) + qty
                break
        else:
            item = CartItem(product_id=product_id, name=name, price=price, image=image, qty=qty)
            cart.append(item.model_dump(by_alias=True))
        return self._save(user, cart)

    def remove_item(self, uid: str, product_id: str) -> List[Dict[str, Any]]:
        user = self._user(uid)
        cart = [line for line in user.get("cart") or [] if line.get("productId") != product_id]
        return self._save(user, cart)

    def update_qty(self, uid: str, product_id: str, qty: Any) -> List[Dict[str, Any]]:
        user = self._user(uid)
        cart = user.get("cart") or []
        for line in cart:
            if line.get("productId") == product_id:
                line["qty"] = clamp_qty(qty)
                return self._save(user, cart)
        return cart

    def clear(self, uid: str) -> List[Dict[str, Any]]:
        user = self.db[USER].find_one({"uid": uid})
        if user:
            self._save(user, [])
        return []

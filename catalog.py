import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database

from categories import CategoryTree
from database import PRODUCT, create_document, get_documents, now_utc, oid
from errors import Conflict, NotFound, ValidationError
from schemas import Product
from storage import is_data_url, upload_batch

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 8


def parse_features(features: Any) -> List[str]:
    if not features:
        return []
    if isinstance(features, str):
        features = features.split(",")
    return [str(f).strip() for f in features if str(f).strip()]


def parse_existing_images(existing: Any) -> List[str]:
    if not existing:
        return []
    if isinstance(existing, str):
        try:
            existing = json.loads(existing)
        except json.JSONDecodeError:
            raise ValidationError("existingImages must be a JSON array of URLs")
    if not isinstance(existing, list):
        raise ValidationError("existingImages must be a list of URLs")
    return [str(u) for u in existing]


def parse_price(value: Any) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number")
    if price < 0:
        raise ValidationError("Price cannot be negative")
    return price


def _number(value: Any, cast=float):
    try:
        return cast(value or 0)
    except (TypeError, ValueError):
        return cast(0)


class Catalog:
    def __init__(self, db: Database, categories: CategoryTree, store):
        self.db = db
        self.categories = categories
        self.store = store

    @property
    def collection(self):
        return self.db[PRODUCT]

    def is_category_referenced(self, category_id: ObjectId) -> bool:
        return self.collection.count_documents({"$or": [{"category": category_id}, {"subcategory": category_id}]}) > 0

    # ---------------------- Reads ----------------------

    def get(self, product_id) -> Dict[str, Any]:
        product = self.collection.find_one({"_id": oid(product_id)})
        if not product:
            raise NotFound("Product not found")
        return self._populate([product])[0]

    def find(self, product_id) -> Optional[Dict[str, Any]]:
        """Raw lookup used for order snapshots; tolerates ids that are not ObjectIds."""
        if not product_id or not ObjectId.is_valid(str(product_id)):
            return None
        return self.collection.find_one({"_id": ObjectId(str(product_id))})

    def list_products(self, category: Optional[str] = None, subcategory: Optional[str] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {}
        if subcategory:
            filt["subcategory"] = oid(subcategory)
        elif category:
            filt["category"] = oid(category)
        return self._populate(get_documents(self.db, PRODUCT, filt, sort=[("createdAt", -1)]))

    def by_category(self, category_id) -> List[Dict[str, Any]]:
        cid = oid(category_id)
        sub_ids = [c["_id"] for c in self.categories.children(cid)]
        filt = {"$or": [{"category": cid}, {"subcategory": {"$in": sub_ids}}]}
        return self._populate(get_documents(self.db, PRODUCT, filt, sort=[("createdAt", -1)]))

    def search(self, q: Optional[str]) -> List[Dict[str, Any]]:
        q = (q or "").strip()
        if not q:
            return []
        cursor = self.collection.find({"name": {"$regex": re.escape(q), "$options": "i"}},
                                      {"name": 1, "images": 1}).limit(SEARCH_LIMIT)
        return list(cursor)

    # ---------------------- Writes ----------------------

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        name = (fields.get("name") or "").strip()
        if not name:
            raise ValidationError("Name is required")
        category_id, subcategory_id = self._resolve_categories(fields.get("category"), fields.get("subcategory"))
        product = Product(
            name=name,
            price=parse_price(fields.get("price")),
            rating=_number(fields.get("rating")),
            reviews=_number(fields.get("reviews"), int),
            tag=fields.get("tag"),
            description=fields.get("description"),
            features=parse_features(fields.get("features")),
            images=self._collect_images(fields.get("images"), fields.get("existingImages")),
            category=category_id,
            subcategory=subcategory_id,
        )
        doc = create_document(self.db, PRODUCT, product)
        logger.info("Created product %s (%s)", doc["name"], doc["_id"])
        return doc

    def update(self, product_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        current = self.collection.find_one({"_id": oid(product_id)})
        if not current:
            raise NotFound("Product not found")

        updates: Dict[str, Any] = {}
        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required")
            updates["name"] = name
        if "price" in fields:
            updates["price"] = parse_price(fields["price"])
        if "rating" in fields:
            updates["rating"] = _number(fields["rating"])
        if "reviews" in fields:
            updates["reviews"] = _number(fields["reviews"], int)
        for key in ("tag", "description"):
            if key in fields:
                updates[key] = fields[key]
        if "features" in fields:
            updates["features"] = parse_features(fields["features"])
        if "category" in fields or "subcategory" in fields:
            updates["category"], updates["subcategory"] = self._resolve_categories(
                fields.get("category", current.get("category")),
                fields.get("subcategory", current.get("subcategory")),
            )
        if "images" in fields or "existingImages" in fields:
            updates["images"] = self._collect_images(fields.get("images"), fields.get("existingImages"))

        updates["updatedAt"] = now_utc()
        self.collection.update_one({"_id": current["_id"]}, {"$set": updates})
        return self.get(current["_id"])

    def delete(self, product_id) -> None:
        res = self.collection.delete_one({"_id": oid(product_id)})
        if res.deleted_count == 0:
            raise NotFound("Product not found")

    # ---------------------- Helpers ----------------------

    def _resolve_categories(self, category, subcategory) -> Tuple[Optional[ObjectId], Optional[ObjectId]]:
        category_id = oid(category) if category else None
        subcategory_id = oid(subcategory) if subcategory else None

        if category_id is not None:
            cat = self.categories.collection.find_one({"_id": category_id})
            if not cat:
                raise ValidationError("Category not found")
            if not cat.get("isMain"):
                raise ValidationError("Category must be a main category")
        if subcategory_id is not None:
            sub = self.categories.collection.find_one({"_id": subcategory_id})
            if not sub:
                raise ValidationError("Subcategory not found")
            if category_id is None:
                category_id = sub.get("parent")
            elif sub.get("parent") != category_id:
                raise Conflict("Subcategory does not belong to the selected category")
        return category_id, subcategory_id

    def _collect_images(self, images: Any, existing: Any) -> List[str]:
        urls = parse_existing_images(existing)
        images = images if isinstance(images, list) else []
        pending = [(i, img) for i, img in enumerate(images) if is_data_url(img)]
        results = upload_batch(self.store, [(img, None) for _, img in pending], folder="products")
        uploaded = {pending[r.index][0]: r.url for r in results if r.ok}
        for i, img in enumerate(images):
            if i in uploaded:
                urls.append(uploaded[i])
            elif isinstance(img, str) and img.startswith("http"):
                urls.append(img)
        return urls

    def _populate(self, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace category/subcategory ids with {_id, name} like a joined read."""
        ids = {p.get(k) for p in products for k in ("category", "subcategory") if p.get(k) is not None}
        names = {c["_id"]: c.get("name") for c in self.categories.collection.find({"_id": {"$in": list(ids)}})} if ids else {}
        for p in products:
            for key in ("category", "subcategory"):
                ref = p.get(key)
                if ref is not None:
                    p[key] = {"_id": ref, "name": names.get(ref)}
        return products

"""
Two-level category tree: main categories (isMain, no parent) and their
subcategories. Slugs are globally unique; display order is explicit
(`order` among main categories, `subcategoryOrder` among siblings).
"""
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import CATEGORY, create_document, now_utc, oid
from errors import Conflict, InvariantViolation, NotFound, ValidationError
from schemas import Category

logger = logging.getLogger(__name__)

LISTING_SORT = [("isMain", -1), ("order", 1), ("subcategoryOrder", 1), ("name", 1)]


def slugify(text: Any) -> str:
    slug = str(text or "").strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def _entry_fields(entry: Any) -> Dict[str, Any]:
    # subcategory entries may be bare names or objects
    if isinstance(entry, str):
        return {"name": entry}
    if isinstance(entry, dict):
        return entry
    raise ValidationError("Invalid subcategory entry")


class CategoryTree:
    def __init__(self, db: Database, in_use: Optional[Callable[[ObjectId], bool]] = None):
        self.db = db
        self.in_use = in_use or (lambda category_id: False)

    @property
    def collection(self):
        return self.db[CATEGORY]

    # ---------------------- Lookups ----------------------

    def get(self, category_id) -> Dict[str, Any]:
        cat = self.collection.find_one({"_id": oid(category_id)})
        if not cat:
            raise NotFound("Category not found")
        return cat

    def children(self, parent_id) -> List[Dict[str, Any]]:
        return list(self.collection.find({"parent": oid(parent_id)}).sort([("subcategoryOrder", 1), ("name", 1)]))

    def slug_taken(self, slug: str, exclude_id: Optional[ObjectId] = None) -> bool:
        query: Dict[str, Any] = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        return self.collection.count_documents(query) > 0

    def unique_slug(self, base: str, exclude_id: Optional[ObjectId] = None) -> str:
        base = base or "category"
        candidate, suffix = base, 0
        while self.slug_taken(candidate, exclude_id):
            suffix += 1
            candidate = f"{base}-{suffix}"
        return candidate

    def list_with_hierarchy(self) -> Dict[str, List[Dict[str, Any]]]:
        flat = list(self.collection.find().sort(LISTING_SORT))
        by_parent: Dict[ObjectId, List[Dict[str, Any]]] = {}
        for cat in flat:
            if cat.get("parent") is not None:
                by_parent.setdefault(cat["parent"], []).append(cat)

        mains = sorted((c for c in flat if c.get("isMain")), key=lambda c: (c.get("order", 0), c.get("name", "")))
        hierarchy = []
        for main in mains:
            subs = sorted(by_parent.get(main["_id"], []),
                          key=lambda c: (c.get("subcategoryOrder", 0), c.get("name", "")))
            hierarchy.append({**main, "subcategories": subs})
        return {"categories": flat, "hierarchy": hierarchy}

    # ---------------------- Mutations ----------------------

    def create(self, name: str, slug: Optional[str] = None, description: Optional[str] = None,
               is_main: bool = False, parent=None, order: int = 0, subcategory_order: int = 0,
               subcategories: Optional[Iterable[Any]] = None) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required")
        parent_id = None if is_main else self._main_parent(parent)

        doc = self._insert(Category(
            name=name,
            slug=self.unique_slug(slugify(slug or name)),
            description=description,
            parent=parent_id,
            is_main=bool(is_main),
            order=order or 0,
            subcategory_order=subcategory_order or 0,
        ))

        created_children = []
        if is_main and subcategories:
            for position, entry in enumerate(subcategories):
                fields = _entry_fields(entry)
                child_name = (fields.get("name") or "").strip()
                if not child_name:
                    continue
                created_children.append(self._insert(Category(
                    name=child_name,
                    slug=self.unique_slug(slugify(fields.get("slug") or child_name)),
                    description=fields.get("description"),
                    parent=doc["_id"],
                    is_main=False,
                    subcategory_order=position,
                )))
        if is_main:
            doc["subcategories"] = created_children
        logger.info("Created category %s (%s) with %d subcategories", doc["slug"], doc["_id"], len(created_children))
        return doc

    def create_subcategory(self, parent_id, name: str, slug: Optional[str] = None,
                           description: Optional[str] = None) -> Dict[str, Any]:
        parent = self._main_parent(parent_id)
        return self.create(name, slug=slug, description=description, is_main=False, parent=parent,
                           subcategory_order=self._next_subcategory_order(parent))

    def update(self, category_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        if fields.get("parent") is not None and str(fields["parent"]) == str(category_id):
            raise InvariantViolation("A category cannot be its own parent")
        current = self.get(category_id)
        cid = current["_id"]
        updates: Dict[str, Any] = {}

        if "name" in fields:
            name = (fields["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required")
            updates["name"] = name
        if fields.get("slug"):
            slug = slugify(fields["slug"])
            if not slug:
                raise ValidationError("Invalid slug")
            if self.slug_taken(slug, exclude_id=cid):
                raise Conflict("Slug already in use")
            updates["slug"] = slug
        if "description" in fields:
            updates["description"] = fields["description"]
        if "order" in fields and fields["order"] is not None:
            updates["order"] = int(fields["order"])
        if "subcategoryOrder" in fields and fields["subcategoryOrder"] is not None:
            updates["subcategoryOrder"] = int(fields["subcategoryOrder"])

        if "isMain" in fields or "parent" in fields:
            is_main = fields.get("isMain")
            if is_main is None:
                is_main = current.get("isMain")
            is_main = bool(is_main)
            if is_main:
                updates["parent"] = None
            else:
                if current.get("isMain") and self.collection.count_documents({"parent": cid}) > 0:
                    raise Conflict("Category has subcategories")
                updates["parent"] = self._main_parent(fields.get("parent") or current.get("parent"))
            updates["isMain"] = is_main

        subcategories = fields.get("subcategories")
        if subcategories is not None and not updates.get("isMain", current.get("isMain")):
            raise ValidationError("Only main categories can have subcategories")
        if subcategories is not None:
            self._check_children(cid, subcategories, claimed={updates["slug"]} if "slug" in updates else set())

        if updates:
            updates["updatedAt"] = now_utc()
            try:
                self.collection.update_one({"_id": cid}, {"$set": updates})
            except DuplicateKeyError:
                raise Conflict("Slug already in use")

        if subcategories is not None:
            self._upsert_children(cid, subcategories)

        updated = self.get(cid)
        if updated.get("isMain"):
            updated["subcategories"] = self.children(cid)
        return updated

    def reorder(self, entries: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        """Bulk display-order update; every id is checked before anything is written."""
        ids = [oid(e.get("id") or e.get("_id")) for e in entries]
        if self.collection.count_documents({"_id": {"$in": ids}}) != len(set(ids)):
            raise NotFound("Category not found")
        stamp = now_utc()
        for category_id, entry in zip(ids, entries):
            updates: Dict[str, Any] = {"updatedAt": stamp}
            if entry.get("order") is not None:
                updates["order"] = int(entry["order"])
            if entry.get("subcategoryOrder") is not None:
                updates["subcategoryOrder"] = int(entry["subcategoryOrder"])
            self.collection.update_one({"_id": category_id}, {"$set": updates})
        return self.list_with_hierarchy()

    def delete(self, category_id) -> None:
        cat = self.get(category_id)
        if cat.get("isMain") and self.collection.count_documents({"parent": cat["_id"]}) > 0:
            raise Conflict("Delete its subcategories first")
        if self.in_use(cat["_id"]):
            raise Conflict("Category is used by products")
        self.collection.delete_one({"_id": cat["_id"]})
        logger.info("Deleted category %s (%s)", cat.get("slug"), cat["_id"])

    # ---------------------- Helpers ----------------------

    def _main_parent(self, parent) -> ObjectId:
        if not parent:
            raise ValidationError("Parent category is required for subcategories")
        parent_id = oid(parent)
        found = self.collection.find_one({"_id": parent_id})
        if not found:
            raise ValidationError("Parent category not found")
        if not found.get("isMain"):
            raise ValidationError("Parent must be a main category")
        return parent_id

    def _next_subcategory_order(self, parent_id: ObjectId) -> int:
        last = list(self.collection.find({"parent": parent_id}).sort("subcategoryOrder", -1).limit(1))
        return last[0].get("subcategoryOrder", 0) + 1 if last else 0

    def _insert(self, category: Category) -> Dict[str, Any]:
        try:
            return create_document(self.db, CATEGORY, category)
        except DuplicateKeyError:
            # another writer claimed the probed slug first
            raise Conflict("Category already exists")

    def _check_children(self, parent_id: ObjectId, entries: Iterable[Any], claimed: Optional[set] = None) -> None:
        """Reject a nested upsert before anything is written; `claimed` holds slugs the parent is taking."""
        claimed = set(claimed or ())
        for entry in entries:
            fields = _entry_fields(entry)
            child_id = fields.get("id") or fields.get("_id")
            if not child_id:
                continue
            child_id = oid(child_id)
            if not self.collection.count_documents({"_id": child_id, "parent": parent_id}):
                raise NotFound("Subcategory not found")
            if "name" in fields and not (fields["name"] or "").strip():
                raise ValidationError("Name is required")
            if fields.get("slug"):
                slug = slugify(fields["slug"])
                if not slug:
                    raise ValidationError("Invalid slug")
                if slug in claimed or self.slug_taken(slug, exclude_id=child_id):
                    raise Conflict("Slug already in use")
                claimed.add(slug)
            if fields.get("subcategoryOrder") is not None:
                try:
                    int(fields["subcategoryOrder"])
                except (TypeError, ValueError):
                    raise ValidationError("subcategoryOrder must be a whole number")

    def _upsert_children(self, parent_id: ObjectId, entries: Iterable[Any]) -> None:
        next_order = self._next_subcategory_order(parent_id)
        for entry in entries:
            fields = _entry_fields(entry)
            child_id = fields.get("id") or fields.get("_id")
            if child_id:
                self.update(child_id, {k: v for k, v in fields.items()
                                       if k in ("name", "slug", "description", "subcategoryOrder")})
                continue
            name = (fields.get("name") or "").strip()
            if not name:
                continue
            self._insert(Category(
                name=name,
                slug=self.unique_slug(slugify(fields.get("slug") or name)),
                description=fields.get("description"),
                parent=parent_id,
                is_main=False,
                subcategory_order=next_order,
            ))
            next_order += 1

from typing import Any, Dict, Optional

from pymongo.database import Database

from database import USER, create_document, now_utc
from errors import NotFound, ValidationError
from identity import Subject
from schemas import User

PROFILE_REQUIRED = ("name", "address", "state", "city", "pincode", "phone")


class UserService:
    def __init__(self, db: Database, default_state: str = ""):
        self.db = db
        self.default_state = default_state

    @property
    def collection(self):
        return self.db[USER]

    def find(self, uid: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"uid": uid})

    def get(self, uid: str) -> Dict[str, Any]:
        user = self.find(uid)
        if not user:
            raise NotFound("User not found")
        return user

    def get_or_create(self, subject: Subject) -> Dict[str, Any]:
        """Profile read; the first authenticated contact creates a minimal record."""
        user = self.find(subject.uid)
        if user:
            return user
        return create_document(self.db, USER, User(
            uid=subject.uid,
            name=subject.name or "User",
            email=subject.email or "",
            photo_url=subject.picture or "",
            state=self.default_state,
        ))

    def sync(self, uid: str, name: Optional[str] = None, email: Optional[str] = None,
             photo_url: Optional[str] = None) -> Dict[str, Any]:
        user = self.find(uid)
        if not user:
            return create_document(self.db, USER, User(
                uid=uid,
                name=name or "User",
                email=email or "",
                photo_url=photo_url or "",
                state=self.default_state,
            ))
        updates = {k: v for k, v in (("name", name), ("email", email), ("photoURL", photo_url)) if v}
        if updates:
            updates["updatedAt"] = now_utc()
            self.collection.update_one({"_id": user["_id"]}, {"$set": updates})
            user.update(updates)
        return user

    def update_profile(self, uid: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        missing = [k for k in PROFILE_REQUIRED if not (fields.get(k) or "").strip()]
        if missing:
            raise ValidationError("All fields are required")
        user = self.get(uid)
        updates = {k: fields[k].strip() for k in PROFILE_REQUIRED}
        if fields.get("email") is not None:
            updates["email"] = fields["email"]
        updates["updatedAt"] = now_utc()
        self.collection.update_one({"_id": user["_id"]}, {"$set": updates})
        user.update(updates)
        return user

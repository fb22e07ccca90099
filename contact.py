from typing import Any, Dict, List

from pydantic import ValidationError as SchemaError
from pymongo.database import Database

from database import CONTACT_MESSAGE, create_document, get_documents
from errors import ValidationError
from schemas import ContactMessage


class ContactService:
    def __init__(self, db: Database):
        self.db = db

    def submit(self, name: str, email: str, subject: str, message: str) -> Dict[str, Any]:
        if not all(v and str(v).strip() for v in (name, email, subject, message)):
            raise ValidationError("All fields are required")
        try:
            doc = ContactMessage(name=name, email=email, subject=subject, message=message)
        except SchemaError:
            raise ValidationError("Invalid email address")
        return create_document(self.db, CONTACT_MESSAGE, doc)

    def list_all(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, CONTACT_MESSAGE, sort=[("createdAt", -1)])

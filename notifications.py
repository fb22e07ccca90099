import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import NOTIFICATION, create_document, get_documents, oid
from errors import EmailError, NotFound
from schemas import Notification, OrderUpdate

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db: Database):
        self.db = db

    def notify(self, uid: str, title: str, message: str, data: Optional[OrderUpdate] = None) -> Dict[str, Any]:
        return create_document(self.db, NOTIFICATION, Notification(uid=uid, title=title, message=message, data=data))

    def list_for_user(self, uid: str, limit: int = 50) -> List[Dict[str, Any]]:
        return get_documents(self.db, NOTIFICATION, {"uid": uid}, sort=[("createdAt", -1)], limit=limit)

    def mark_read(self, uid: str, notification_id: str) -> Dict[str, Any]:
        note = self.db[NOTIFICATION].find_one({"_id": oid(notification_id), "uid": uid})
        if not note:
            raise NotFound("Notification not found")
        self.db[NOTIFICATION].update_one({"_id": note["_id"]}, {"$set": {"read": True}})
        note["read"] = True
        return note


def announce(notifications: NotificationService, mailer, uid: str, title: str, message: str,
             data: Optional[OrderUpdate] = None, email: Optional[str] = None,
             subject: Optional[str] = None, html_body: Optional[str] = None) -> bool:
    """
    Best-effort fan-out of an order change: one notification record, then one
    email when an address is on file. Failures are logged, never raised, since
    the order change they describe is already persisted.

    Returns True when an email was handed to the mailer successfully.
    """
    try:
        notifications.notify(uid, title, message, data)
    except PyMongoError:
        logger.exception("Failed to record notification for %s", uid)

    if not email:
        return False
    try:
        mailer.send(email, subject or title, html_body or message)
    except EmailError:
        logger.exception("Failed to send email to %s", email)
        return False
    return True

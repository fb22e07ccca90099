import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from firebase_admin import auth
from firebase_admin.exceptions import FirebaseError

from config import Settings
from errors import AuthError
from firebase_init import firebase_app

logger = logging.getLogger(__name__)


@dataclass
class Subject:
    """The authenticated caller: an opaque uid plus whatever claims the token carried."""
    uid: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return self.claims.get("name") or self.claims.get("displayName")

    @property
    def email(self) -> Optional[str]:
        return self.claims.get("email")

    @property
    def picture(self) -> Optional[str]:
        return self.claims.get("picture") or self.claims.get("photoURL")


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("No token provided")
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("No token provided")
    return token


class FirebaseIdentity:
    def __init__(self, settings: Settings):
        self.settings = settings

    def verify(self, token: str) -> Subject:
        try:
            decoded = auth.verify_id_token(token, app=firebase_app(self.settings))
        except (ValueError, FirebaseError) as e:
            logger.warning("Token verification failed: %s", e)
            raise AuthError("Invalid or expired token")
        return Subject(uid=decoded["uid"], claims=decoded)

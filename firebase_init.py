import threading

import firebase_admin
from firebase_admin import credentials

from config import Settings

_init_lock = threading.Lock()


def firebase_app(settings: Settings) -> firebase_admin.App:
    """Return the default Firebase app, initializing it from Settings on first use."""
    with _init_lock:
        try:
            return firebase_admin.get_app()
        except ValueError:
            pass
        cred = credentials.Certificate(settings.firebase_service_account())
        options = {"storageBucket": settings.firebase_storage_bucket} if settings.firebase_storage_bucket else None
        return firebase_admin.initialize_app(cred, options)

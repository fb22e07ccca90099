"""
Shared fixtures: an in-memory pymongo-compatible database plus in-process
stand-ins for identity, object storage, email and the payment gateway.
"""
import base64

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from config import Settings
from database import ensure_indexes
from errors import AuthError, EmailError, StorageError
from identity import Subject
from services import Services

GATEWAY_SECRET = "rzp_test_secret"


class FakeIdentity:
    """Accepts `Bearer <uid>`; the literal token "bad" is rejected."""

    def verify(self, token):
        if token == "bad":
            raise AuthError("Invalid or expired token")
        return Subject(uid=token, claims={"name": f"{token.title()}", "email": f"{token}@example.com"})


class FakeStore:
    """Fails any payload whose bytes start with FAIL."""

    def __init__(self):
        self.stored = []

    def store(self, data, content_type, folder="uploads", extension=None):
        if data.startswith(b"FAIL"):
            raise StorageError("bucket unavailable")
        url = f"https://storage.test/{folder}/{len(self.stored)}.{extension}"
        self.stored.append((data, content_type, url))
        return url


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html_body):
        self.sent.append({"to": to, "subject": subject, "html": html_body})
        if self.fail:
            raise EmailError("smtp relay down")


class FakeGateway:
    def __init__(self):
        self.created = []

    def create_order(self, amount_minor, currency, receipt):
        self.created.append({"amount": amount_minor, "currency": currency, "receipt": receipt})
        return f"order_{len(self.created):04d}"


def data_url(payload: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(payload).decode()}"


def auth(uid: str = "alice") -> dict:
    return {"Authorization": f"Bearer {uid}"}


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=GATEWAY_SECRET,
        frontend_url="https://shop.test",
        default_state="Tamil Nadu",
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient()["store_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(settings, db, store, mailer, gateway):
    return Services.build(settings, db, identity=FakeIdentity(), store=store, mailer=mailer, gateway=gateway)


@pytest.fixture
def client(services):
    main.app.state.services = services
    yield TestClient(main.app)
    main.app.state.services = None


@pytest.fixture
def buyer(services):
    """A user with a complete checkout profile."""
    services.users.sync("alice", name="Alice", email="alice@example.com")
    return services.users.update_profile("alice", {
        "name": "Alice",
        "address": "12 Lake Road",
        "state": "Tamil Nadu",
        "city": "Chennai",
        "pincode": "600001",
        "phone": "9876543210",
        "email": "alice@example.com",
    })

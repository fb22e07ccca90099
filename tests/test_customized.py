from datetime import date

import pytest

from customized import CustomOrderService, _day
from errors import InvalidState, NotFound, ValidationError
from mailer import long_date, status_label
from tests.conftest import data_url


@pytest.fixture
def order(services, buyer):
    return services.customized.create("alice", height=12, length=8, material="PLA", notes="Blue please")


def notifications_for(services, uid="alice"):
    return services.notifications.list_for_user(uid)


# ============================================================================
# Creation
# ============================================================================

class TestCreate:

    def test_snapshot_and_defaults(self, order):
        assert order["uid"] == "alice"
        assert order["name"] == "Alice"
        assert order["city"] == "Chennai"
        assert order["price"] is None
        assert order["payment"] == "COD"
        assert order["paymentStatus"] == "pending"
        assert order["status"] == "pending"
        assert order["expectedDelivery"] is None
        assert (order["height"], order["length"]) == (12, 8)

    def test_partial_upload_failure_keeps_the_rest(self, services, store, buyer):
        doc = services.customized.create("alice", images=[
            {"base64": data_url(b"front"), "originalName": "front.PNG"},
            {"base64": data_url(b"FAIL-side")},
            {"base64": "https://cdn.test/not-a-payload.png"},
            "junk",
            {"base64": data_url(b"back", "image/jpeg")},
        ])
        assert doc["images"] == [
            "https://storage.test/customized/0.PNG",
            "https://storage.test/customized/1.jpeg",
        ]
        assert len(store.stored) == 2

    @pytest.mark.parametrize("value, expected", [("15.5", 15.5), (0, None), ("", None), ("wide", None), (None, None)])
    def test_dimensions_coerced(self, services, buyer, value, expected):
        assert services.customized.create("alice", height=value)["height"] == expected

    def test_missing_profile(self, services):
        with pytest.raises(NotFound):
            services.customized.create("ghost")

    def test_listing(self, services, order):
        services.users.sync("bob", name="Bob")
        services.customized.create("bob")
        assert len(services.customized.list_all()) == 2
        assert [o["_id"] for o in services.customized.list_for_user("alice")] == [order["_id"]]


# ============================================================================
# Admin updates
# ============================================================================

class TestUpdate:

    def test_no_changes_has_no_side_effects(self, services, mailer, order):
        services.customized.update(order["_id"])
        services.customized.update(order["_id"], status="pending")
        assert notifications_for(services) == []
        assert mailer.sent == []

    def test_repeating_current_values_is_not_a_change(self, services, mailer, order):
        services.customized.update(order["_id"], price=1500, expected_delivery="2025-03-05")
        mailer.sent.clear()
        services.customized.update(order["_id"], price="1500", expected_delivery="2025-03-05T00:00:00.000Z")
        assert len(notifications_for(services)) == 1
        assert mailer.sent == []

    def test_one_change_one_notification_one_email(self, services, mailer, order):
        updated = services.customized.update(order["_id"], price=1500)

        assert updated["price"] == 1500
        notes = notifications_for(services)
        assert len(notes) == 1
        assert notes[0]["title"] == "Custom Order Update"
        assert notes[0]["message"] == "Your custom order is now ₹1500 - Status: pending"
        assert notes[0]["data"]["changes"] == ["Price updated to ₹1500"]
        assert notes[0]["read"] is False

        assert len(mailer.sent) == 1
        mail = mailer.sent[0]
        assert mail["to"] == "alice@example.com"
        assert mail["subject"] == f"Update on Your Custom Order #{str(order['_id'])[-6:]}"
        assert "Price updated to ₹1500" in mail["html"]
        assert "To be confirmed" in mail["html"]
        assert "https://shop.test/order-custom" in mail["html"]

    def test_several_changes_are_one_announcement(self, services, mailer, order):
        updated = services.customized.update(order["_id"], price=2499.5, status="priced",
                                             expected_delivery="2025-03-05")

        assert updated["status"] == "priced"
        assert updated["expectedDelivery"].date() == date(2025, 3, 5)
        notes = notifications_for(services)
        assert len(notes) == 1
        assert notes[0]["data"]["changes"] == [
            "Price updated to ₹2499.5",
            "Status changed to priced",
            "Expected delivery set to March 5, 2025",
        ]
        assert len(mailer.sent) == 1
        assert "Priced (Quote Sent)" in mailer.sent[0]["html"]
        assert "March 5, 2025" in mailer.sent[0]["html"]

    def test_change_is_persisted(self, services, order):
        services.customized.update(order["_id"], status="in_progress")
        assert services.customized.get(order["_id"])["status"] == "in_progress"

    def test_email_failure_is_swallowed(self, services, mailer, order):
        mailer.fail = True
        updated = services.customized.update(order["_id"], status="in_progress")
        assert updated["status"] == "in_progress"
        assert len(mailer.sent) == 1
        assert len(notifications_for(services)) == 1

    def test_no_email_without_address(self, services, mailer):
        services.users.sync("bob", name="Bob")
        doc = services.customized.create("bob")
        services.customized.update(doc["_id"], price=100)
        assert len(notifications_for(services, "bob")) == 1
        assert mailer.sent == []

    @pytest.mark.parametrize("kwargs", [{"price": -1}, {"price": "cheap"}, {"expected_delivery": "soon"}])
    def test_invalid_input_writes_nothing(self, services, mailer, order, kwargs):
        with pytest.raises(ValidationError):
            services.customized.update(order["_id"], **kwargs)
        assert services.customized.get(order["_id"])["price"] is None
        assert notifications_for(services) == []

    def test_missing_order(self, services):
        with pytest.raises(NotFound):
            services.customized.update("65f000000000000000000000", price=1)

    def test_custom_policy(self, services, settings, store, mailer, order):
        def no_reopen(current, new):
            if current == "completed":
                raise InvalidState("Completed orders cannot change status")

        orders = CustomOrderService(services.db, services.users, store, services.notifications, mailer,
                                    settings, transition_policy=no_reopen)
        orders.update(order["_id"], status="completed")
        with pytest.raises(InvalidState):
            orders.update(order["_id"], status="pending")


# ============================================================================
# Payment confirmation
# ============================================================================

class TestConfirmPayment:

    def test_defaults(self, services, order):
        doc = services.customized.confirm_payment(order["_id"])
        assert (doc["payment"], doc["paymentStatus"], doc["status"]) == ("COD", "completed", "confirmed")

    def test_explicit_values(self, services, order):
        services.customized.confirm_payment(order["_id"], payment="ONLINE", payment_status="completed")
        stored = services.customized.get(order["_id"])
        assert stored["payment"] == "ONLINE"
        assert stored["status"] == "confirmed"

    def test_missing_order(self, services):
        with pytest.raises(NotFound):
            services.customized.confirm_payment("65f000000000000000000000")


# ============================================================================
# Formatting helpers
# ============================================================================

class TestFormatting:

    @pytest.mark.parametrize("status, label", [
        ("pending", "Pending"),
        ("priced", "Priced (Quote Sent)"),
        ("in_progress", "In Progress"),
        ("completed", "Completed"),
        ("confirmed", "confirmed"),
    ])
    def test_status_label(self, status, label):
        assert status_label(status) == label

    def test_long_date(self):
        assert long_date(None) == "To be confirmed"
        assert long_date(_day("2025-03-05")) == "March 5, 2025"

    def test_day_accepts_iso_timestamps(self):
        assert _day("2025-12-31T18:30:00.000Z") == date(2025, 12, 31)

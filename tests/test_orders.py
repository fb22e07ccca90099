import pytest

from errors import Conflict, InvalidState, NotFound, ValidationError
from gateway import payment_signature, signature_matches
from notifications import NotificationService
from orders import OrderService
from tests.conftest import GATEWAY_SECRET


def place(services, buyer, items, payment=None):
    return services.orders.place_order("alice", buyer, items, payment=payment)


@pytest.fixture
def online_order(services, buyer):
    return place(services, buyer, [{"productId": "p1", "name": "Racer", "price": 499.99, "qty": 1,
                                    "image": "https://cdn.test/r.png"}], payment="ONLINE")


# ============================================================================
# Placement
# ============================================================================

class TestPlaceOrder:

    def test_total_is_sum_of_lines(self, services, buyer):
        order = place(services, buyer, [
            {"productId": "p1", "name": "Racer", "price": 19.99, "qty": 3, "image": "a"},
            {"productId": "p2", "name": "Doll", "price": 5.01, "qty": 1, "image": "b"},
        ])
        assert order["product"]["total"] == 19.99 * 3 + 5.01 * 1
        assert [i["qty"] for i in order["product"]["items"]] == [3, 1]
        assert order["type"] == "product"
        assert order["userId"] == "alice"

    def test_buyer_snapshot(self, services, buyer):
        order = place(services, buyer, [])
        assert order["city"] == "Chennai"
        assert order["email"] == "alice@example.com"
        assert order["product"]["total"] == 0

    def test_cod_is_paid_on_placement(self, services, buyer):
        order = place(services, buyer, [])
        assert order["payment"] == "COD"
        assert order["paymentStatus"] == "completed"
        assert order["status"] == "pending"

    def test_online_waits_for_payment(self, online_order):
        assert online_order["paymentStatus"] == "pending"
        assert online_order["razorpay"] is None

    def test_items_must_be_a_list(self, services, buyer):
        with pytest.raises(ValidationError):
            place(services, buyer, {"productId": "p1"})

    def test_unknown_payment_method(self, services, buyer):
        with pytest.raises(ValidationError):
            place(services, buyer, [], payment="CARD")

    @pytest.mark.parametrize("qty, expected", [(None, 1), (0, 1), ("2", 2)])
    def test_qty_defaults(self, services, buyer, qty, expected):
        order = place(services, buyer, [{"name": "Racer", "price": 1, "qty": qty, "image": "a"}])
        assert order["product"]["items"][0]["qty"] == expected

    def test_negative_qty_rejected(self, services, buyer):
        with pytest.raises(ValidationError):
            place(services, buyer, [{"name": "Racer", "price": 1, "qty": -1, "image": "a"}])

    def test_snapshot_fills_gaps_and_is_immutable(self, services, buyer):
        product = services.catalog.create({"name": "Racer", "price": 250, "images": ["https://cdn.test/r.png"]})
        order = place(services, buyer, [{"productId": str(product["_id"]), "qty": 2}])
        line = order["product"]["items"][0]
        assert line == {"productId": str(product["_id"]), "name": "Racer", "price": 250,
                        "qty": 2, "image": "https://cdn.test/r.png"}

        services.catalog.update(product["_id"], {"price": 999, "name": "Renamed"})
        stored = services.orders.get(order["_id"])
        assert stored["product"]["items"][0]["price"] == 250
        assert stored["product"]["items"][0]["name"] == "Racer"
        assert stored["product"]["total"] == 500

    def test_listing(self, services, buyer):
        place(services, buyer, [])
        services.orders.place_order("bob", {"name": "Bob"}, [])
        assert len(services.orders.list_all()) == 2
        assert [o["userId"] for o in services.orders.list_for_user("bob")] == ["bob"]

    def test_get_missing(self, services):
        with pytest.raises(NotFound):
            services.orders.get("65f000000000000000000000")


# ============================================================================
# Gateway two-phase protocol
# ============================================================================

class TestGatewayOrder:

    def test_create_registers_amount_in_minor_units(self, services, gateway, online_order):
        params = services.orders.create_gateway_order(online_order["_id"])
        assert params == {
            "orderId": str(online_order["_id"]),
            "gatewayOrderId": "order_0001",
            "amount": 49999,
            "currency": "INR",
            "key": "rzp_test_key",
            "prefill": {"name": "Alice", "email": "alice@example.com", "contact": "9876543210"},
        }
        assert gateway.created == [{"amount": 49999, "currency": "INR", "receipt": str(online_order["_id"])}]
        assert services.orders.get(online_order["_id"])["razorpay"]["orderId"] == "order_0001"

    def test_cod_order_rejected(self, services, gateway, buyer):
        order = place(services, buyer, [])
        with pytest.raises(InvalidState):
            services.orders.create_gateway_order(order["_id"])
        assert gateway.created == []

    def test_paid_order_rejected(self, services, online_order):
        services.orders.create_gateway_order(online_order["_id"])
        sig = payment_signature(GATEWAY_SECRET, "order_0001", "pay_1")
        services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", sig)
        with pytest.raises(InvalidState):
            services.orders.create_gateway_order(online_order["_id"])


class TestVerifyPayment:

    def test_valid_signature_completes_payment(self, services, online_order):
        services.orders.create_gateway_order(online_order["_id"])
        sig = payment_signature(GATEWAY_SECRET, "order_0001", "pay_1")
        outcome = services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", sig)

        assert outcome.success
        stored = services.orders.get(online_order["_id"])
        assert stored["paymentStatus"] == "completed"
        assert stored["razorpay"] == {"orderId": "order_0001", "paymentId": "pay_1", "signature": sig}

    @pytest.mark.parametrize("payment_id, tamper", [
        ("pay_1", lambda s: s[:-1] + ("0" if s[-1] != "0" else "1")),
        ("pay_2", lambda s: s),
        ("pay_1", lambda s: s.upper()),
        ("pay_1", lambda s: ""),
    ])
    def test_any_mutation_fails(self, services, online_order, payment_id, tamper):
        services.orders.create_gateway_order(online_order["_id"])
        sig = tamper(payment_signature(GATEWAY_SECRET, "order_0001", "pay_1"))
        outcome = services.orders.verify_payment(online_order["_id"], "order_0001", payment_id, sig)

        assert not outcome.success
        assert services.orders.get(online_order["_id"])["paymentStatus"] == "failed"

    def test_non_ascii_signature_is_a_failed_payment(self, services, online_order):
        services.orders.create_gateway_order(online_order["_id"])
        outcome = services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", "sïg")

        assert not outcome.success
        assert services.orders.get(online_order["_id"])["paymentStatus"] == "failed"

    def test_paid_order_cannot_be_verified_again(self, services, online_order):
        services.orders.create_gateway_order(online_order["_id"])
        sig = payment_signature(GATEWAY_SECRET, "order_0001", "pay_1")
        services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", sig)

        with pytest.raises(InvalidState):
            services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", "0" * 64)
        assert services.orders.get(online_order["_id"])["paymentStatus"] == "completed"

    def test_gateway_order_id_mismatch_is_conflict(self, services, online_order):
        services.orders.create_gateway_order(online_order["_id"])
        sig = payment_signature(GATEWAY_SECRET, "order_9999", "pay_1")
        with pytest.raises(Conflict):
            services.orders.verify_payment(online_order["_id"], "order_9999", "pay_1", sig)
        assert services.orders.get(online_order["_id"])["paymentStatus"] == "pending"

    def test_before_gateway_order_is_conflict(self, services, online_order):
        with pytest.raises(Conflict):
            services.orders.verify_payment(online_order["_id"], "order_0001", "pay_1", "x")

    def test_cod_order_is_invalid_state(self, services, buyer):
        order = place(services, buyer, [])
        with pytest.raises(InvalidState):
            services.orders.verify_payment(order["_id"], "order_0001", "pay_1", "x")


class TestSignature:

    def test_matches_only_exact_input(self):
        sig = payment_signature("secret", "order_1", "pay_1")
        assert len(sig) == 64
        assert signature_matches("secret", "order_1", "pay_1", sig)
        assert not signature_matches("secreT", "order_1", "pay_1", sig)
        assert not signature_matches("secret", "order_1", "pay_0", sig)
        assert not signature_matches("secret", "order_1", "pay_1", None)
        assert not signature_matches("secret", "order_1", "pay_1", "é" * 64)


# ============================================================================
# Status changes
# ============================================================================

class TestSetStatus:

    def test_change_notifies_and_emails(self, services, mailer, buyer):
        order = place(services, buyer, [])
        updated = services.orders.set_status(order["_id"], "shipped")

        assert updated["status"] == "shipped"
        notes = services.notifications.list_for_user("alice")
        assert len(notes) == 1
        assert notes[0]["data"]["orderId"] == str(order["_id"])
        assert notes[0]["data"]["orderType"] == "product"
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == "alice@example.com"
        assert mailer.sent[0]["subject"] == f"Update on Your Order #{str(order['_id'])[-6:]}"
        assert "Shipped" in mailer.sent[0]["html"]

    def test_same_status_is_silent(self, services, mailer, buyer):
        order = place(services, buyer, [])
        services.orders.set_status(order["_id"], "pending")
        assert services.notifications.list_for_user("alice") == []
        assert mailer.sent == []

    def test_unknown_status_rejected(self, services, buyer):
        order = place(services, buyer, [])
        with pytest.raises(ValidationError):
            services.orders.set_status(order["_id"], "lost")

    def test_backward_move_allowed_by_default(self, services, buyer):
        order = place(services, buyer, [])
        services.orders.set_status(order["_id"], "delivered")
        assert services.orders.set_status(order["_id"], "pending")["status"] == "pending"

    def test_email_failure_does_not_fail_update(self, services, mailer, buyer):
        mailer.fail = True
        order = place(services, buyer, [])
        services.orders.set_status(order["_id"], "processing")
        assert services.orders.get(order["_id"])["status"] == "processing"
        assert len(services.notifications.list_for_user("alice")) == 1

    def test_custom_policy(self, services, settings, gateway, mailer, buyer):
        ranks = {"pending": 0, "processing": 1, "shipped": 2, "delivered": 3}

        def forward_only(current, new):
            if ranks[new] < ranks[current]:
                raise InvalidState(f"Cannot move from {current} to {new}")

        orders = OrderService(services.db, services.catalog, gateway, NotificationService(services.db), mailer,
                              settings, transition_policy=forward_only)
        order = place(services, buyer, [])
        orders.set_status(order["_id"], "shipped")
        with pytest.raises(InvalidState):
            orders.set_status(order["_id"], "processing")
        assert orders.get(order["_id"])["status"] == "shipped"

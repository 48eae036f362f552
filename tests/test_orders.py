"""Tests for order creation."""

import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import carts
import orders
from errors import (
    InsufficientStockError,
    PaymentAuthorizationFailedError,
    ProductNotFoundError,
    ValidationFailedError,
)

ADDRESS = {
    "first_name": "Alice",
    "last_name": "Shopper",
    "address": "1 Market Street",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "phone": "555-0100",
}


def stock_of(db, product_id):
    return db["product"].find_one({"_id": ObjectId(product_id)})["stock"]


class TestCreateOrder:
    def test_total_includes_shipping(self, db, gateway, user, make_product):
        apple = make_product("Apple", price=2.5, stock=10)
        milk = make_product("Milk", price=1.99, stock=5, category="dairy")

        order, secret = orders.create_order(
            db, gateway, user["_id"],
            [{"product": apple, "quantity": 3}, {"product": milk, "quantity": 2}],
            ADDRESS, "credit_card",
        )

        line_sum = sum(line["price"] * line["quantity"] for line in order["items"])
        assert order["subtotal"] == pytest.approx(11.48)
        assert order["shipping_cost"] == 10.0
        assert order["total_amount"] == pytest.approx(line_sum + 10.0)
        assert order["status"] == "pending"
        assert order["payment_id"] == "pi_test_1"
        assert secret == "pi_test_1_secret"
        # Gateway is charged in cents
        assert gateway.authorized == [(2148, "usd", "credit_card", "pi_test_1")]

    def test_stock_is_decremented(self, db, gateway, user, make_product):
        apple = make_product(stock=10)
        orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 4}], ADDRESS, "paypal")
        assert stock_of(db, apple) == 6

    def test_uses_catalog_price_not_client_price(self, db, gateway, user, make_product):
        apple = make_product(price=3.0)
        order, _ = orders.create_order(
            db, gateway, user["_id"],
            [{"product": apple, "quantity": 1, "price": 0.01}],
            ADDRESS, "credit_card",
        )
        assert order["items"][0]["price"] == 3.0
        assert order["total_amount"] == 13.0

    def test_insufficient_stock_leaves_no_trace(self, db, gateway, user, make_product):
        apple = make_product(stock=3)
        with pytest.raises(InsufficientStockError) as exc_info:
            orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 4}], ADDRESS, "credit_card")

        assert exc_info.value.requested == 4
        assert exc_info.value.available == 3
        assert stock_of(db, apple) == 3
        assert db["order"].count_documents({}) == 0
        assert gateway.authorized == []

    def test_fails_fast_on_first_bad_line(self, db, gateway, user, make_product):
        apple = make_product(stock=10)
        missing = str(ObjectId())
        with pytest.raises(ProductNotFoundError) as exc_info:
            orders.create_order(
                db, gateway, user["_id"],
                [{"product": missing, "quantity": 1}, {"product": apple, "quantity": 1}],
                ADDRESS, "credit_card",
            )
        assert exc_info.value.product_id == missing
        assert stock_of(db, apple) == 10

    def test_duplicate_lines_are_checked_together(self, db, gateway, user, make_product):
        apple = make_product(stock=5)
        with pytest.raises(InsufficientStockError) as exc_info:
            orders.create_order(
                db, gateway, user["_id"],
                [{"product": apple, "quantity": 3}, {"product": apple, "quantity": 3}],
                ADDRESS, "credit_card",
            )
        assert exc_info.value.requested == 6
        assert stock_of(db, apple) == 5

    def test_invalid_product_id_is_a_validation_error(self, db, gateway, user):
        with pytest.raises(ValidationFailedError) as exc_info:
            orders.create_order(db, gateway, user["_id"], [{"product": "nope", "quantity": 1}], ADDRESS, "credit_card")
        assert exc_info.value.field == "items.0.product"

    def test_empty_items_rejected(self, db, gateway, user):
        with pytest.raises(ValidationFailedError):
            orders.create_order(db, gateway, user["_id"], [], ADDRESS, "credit_card")

    def test_payment_failure_is_a_no_op(self, db, gateway, user, make_product):
        apple = make_product(stock=10)
        gateway.fail_with = "card_declined"

        with pytest.raises(PaymentAuthorizationFailedError) as exc_info:
            orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 2}], ADDRESS, "credit_card")

        assert "card_declined" in str(exc_info.value)
        assert stock_of(db, apple) == 10
        assert db["order"].count_documents({}) == 0

    def test_prices_frozen_after_product_edit(self, db, gateway, user, make_product):
        apple = make_product(price=2.0)
        order, _ = orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 2}], ADDRESS, "credit_card")

        db["product"].update_one({"_id": ObjectId(apple)}, {"$set": {"price": 9.99}})

        stored = db["order"].find_one({"_id": order["_id"]})
        assert stored["items"][0]["price"] == 2.0
        assert stored["total_amount"] == 14.0

    def test_checkout_clears_cart(self, db, gateway, user, make_product):
        apple = make_product(stock=10)
        carts.add_item(db, user["_id"], apple, 2)
        orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 2}], ADDRESS, "credit_card")
        assert carts.get_cart(db, user["_id"])["items"] == []


class TestConcurrentCheckout:
    def test_last_unit_sold_once(self, db, gateway, user, other_user, make_product):
        """A competing order commits while the first is waiting on the gateway."""
        apple = make_product(stock=1)
        competing = {}

        def place_competing_order():
            competing["order"], _ = orders.create_order(
                db, gateway, other_user["_id"], [{"product": apple, "quantity": 1}], ADDRESS, "credit_card"
            )

        gateway.on_authorize = place_competing_order

        with pytest.raises(InsufficientStockError) as exc_info:
            orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 1}], ADDRESS, "credit_card")

        assert exc_info.value.available == 0
        assert stock_of(db, apple) == 0
        assert db["order"].count_documents({}) == 1
        assert db["order"].find_one()["user"] == other_user["_id"]
        # The losing checkout's authorization is voided
        assert len(gateway.cancelled) == 1

    def test_partial_reservation_rolled_back(self, db, gateway, user, make_product):
        apple = make_product("Apple", stock=5)
        pear = make_product("Pear", stock=2)

        def sell_out_pears():
            db["product"].update_one({"_id": ObjectId(pear)}, {"$set": {"stock": 0}})

        gateway.on_authorize = sell_out_pears

        with pytest.raises(InsufficientStockError):
            orders.create_order(
                db, gateway, user["_id"],
                [{"product": apple, "quantity": 2}, {"product": pear, "quantity": 1}],
                ADDRESS, "debit_card",
            )

        assert stock_of(db, apple) == 5
        assert db["order"].count_documents({}) == 0
        assert gateway.cancelled == ["pi_test_1"]


class TestCheckoutRollback:
    def test_insert_failure_restores_stock_and_cancels(self, db, gateway, user, make_product, monkeypatch):
        apple = make_product("Apple", stock=5)
        pear = make_product("Pear", stock=3)
        real_insert = mongomock.collection.Collection.insert_one

        def failing_insert(self, document, *args, **kwargs):
            if self.name == "order":
                raise PyMongoError("write failed")
            return real_insert(self, document, *args, **kwargs)

        monkeypatch.setattr(mongomock.collection.Collection, "insert_one", failing_insert)

        with pytest.raises(PyMongoError):
            orders.create_order(
                db, gateway, user["_id"],
                [{"product": apple, "quantity": 2}, {"product": pear, "quantity": 1}],
                ADDRESS, "credit_card",
            )

        assert stock_of(db, apple) == 5
        assert stock_of(db, pear) == 3
        assert db["order"].count_documents({}) == 0
        assert gateway.cancelled == ["pi_test_1"]

    def test_failed_restore_still_cancels_and_keeps_original_error(self, db, gateway, user, make_product, monkeypatch):
        apple = make_product("Apple", stock=5)
        pear = make_product("Pear", stock=2)

        def broken_restore(db, product_id, amount):
            raise RuntimeError("db down")

        def sell_out_pears():
            db["product"].update_one({"_id": ObjectId(pear)}, {"$set": {"stock": 0}})

        monkeypatch.setattr(orders, "restore_stock", broken_restore)
        gateway.on_authorize = sell_out_pears

        with pytest.raises(InsufficientStockError):
            orders.create_order(
                db, gateway, user["_id"],
                [{"product": apple, "quantity": 2}, {"product": pear, "quantity": 1}],
                ADDRESS, "credit_card",
            )

        assert gateway.cancelled == ["pi_test_1"]
        assert db["order"].count_documents({}) == 0

    def test_cart_clear_failure_keeps_order(self, db, gateway, user, make_product, monkeypatch):
        apple = make_product(stock=5)

        def broken_clear(db, user_id):
            raise PyMongoError("cart write failed")

        monkeypatch.setattr(orders, "clear_cart", broken_clear)

        order, secret = orders.create_order(
            db, gateway, user["_id"], [{"product": apple, "quantity": 1}], ADDRESS, "credit_card"
        )

        assert secret == "pi_test_1_secret"
        assert db["order"].count_documents({"_id": order["_id"]}) == 1
        assert stock_of(db, apple) == 4
        assert gateway.cancelled == []


class TestOrdersApi:
    def test_create_order(self, client, db, user_headers, make_product, shipping_address):
        apple = make_product(price=2.5, stock=10)
        response = client.post(
            "/api/orders",
            json={
                "items": [{"product": apple, "quantity": 2, "price": 0.01}],
                "shippingAddress": shipping_address,
                "paymentMethod": "credit_card",
                "totalAmount": 1,
            },
            headers=user_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["clientSecret"] == "pi_test_1_secret"
        order = data["order"]
        assert order["totalAmount"] == 15.0
        assert order["paymentId"] == "pi_test_1"
        assert order["status"] == "pending"
        assert order["shippingAddress"]["zipCode"] == "62701"
        assert order["items"][0]["price"] == 2.5
        assert "createdAt" in order

    def test_requires_authentication(self, client, make_product, shipping_address):
        apple = make_product()
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 1}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
        )
        assert response.status_code == 401

    def test_missing_address_field(self, client, user_headers, make_product, shipping_address):
        apple = make_product()
        del shipping_address["phone"]
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 1}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
            headers=user_headers,
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "ValidationFailedError"
        assert data["field"] == "shippingAddress.phone"

    def test_invalid_payment_method(self, client, user_headers, make_product, shipping_address):
        apple = make_product()
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 1}], "shippingAddress": shipping_address, "paymentMethod": "cash"},
            headers=user_headers,
        )
        assert response.status_code == 400
        assert response.json()["field"] == "paymentMethod"

    def test_zero_quantity_rejected(self, client, user_headers, make_product, shipping_address):
        apple = make_product()
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 0}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
            headers=user_headers,
        )
        assert response.status_code == 400
        assert response.json()["field"] == "items.0.quantity"

    def test_insufficient_stock_body(self, client, user_headers, make_product, shipping_address):
        apple = make_product(stock=3)
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 4}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
            headers=user_headers,
        )
        assert response.status_code == 400
        data = response.json()
        assert data["error_type"] == "InsufficientStockError"
        assert data["product"] == apple
        assert data["requested"] == 4
        assert data["available"] == 3

    def test_unknown_product(self, client, user_headers, shipping_address):
        response = client.post(
            "/api/orders",
            json={"items": [{"product": str(ObjectId()), "quantity": 1}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
            headers=user_headers,
        )
        assert response.status_code == 404
        assert response.json()["error_type"] == "ProductNotFoundError"

    def test_payment_failure(self, client, db, gateway, user_headers, make_product, shipping_address):
        apple = make_product(stock=5)
        gateway.fail_with = "Payment gateway timed out"
        response = client.post(
            "/api/orders",
            json={"items": [{"product": apple, "quantity": 1}], "shippingAddress": shipping_address, "paymentMethod": "paypal"},
            headers=user_headers,
        )
        assert response.status_code == 502
        assert response.json()["error_type"] == "PaymentAuthorizationFailedError"
        assert db["order"].count_documents({}) == 0


class TestOrderRetrieval:
    @pytest.fixture
    def placed(self, db, gateway, user, make_product):
        apple = make_product()
        order, _ = orders.create_order(db, gateway, user["_id"], [{"product": apple, "quantity": 1}], ADDRESS, "credit_card")
        return str(order["_id"])

    def test_owner_can_read(self, client, placed, user_headers):
        response = client.get(f"/api/orders/{placed}", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == placed
        assert data["customer"]["email"] == "alice@example.com"

    def test_admin_can_read(self, client, placed, admin_headers):
        response = client.get(f"/api/orders/{placed}", headers=admin_headers)
        assert response.status_code == 200

    def test_other_user_forbidden(self, client, placed, other_headers):
        response = client.get(f"/api/orders/{placed}", headers=other_headers)
        assert response.status_code == 403

    def test_other_user_forbidden_for_missing_order(self, client, other_headers):
        response = client.get(f"/api/orders/{ObjectId()}", headers=other_headers)
        assert response.status_code == 403
        response = client.get("/api/orders/not-an-id", headers=other_headers)
        assert response.status_code == 403

    def test_admin_gets_404_for_missing_order(self, client, admin_headers):
        response = client.get(f"/api/orders/{ObjectId()}", headers=admin_headers)
        assert response.status_code == 404

    def test_my_orders(self, client, placed, user_headers, other_headers):
        mine = client.get("/api/orders/my-orders", headers=user_headers).json()
        assert [o["id"] for o in mine] == [placed]
        assert client.get("/api/orders/my-orders", headers=other_headers).json() == []

    def test_list_all_requires_admin(self, client, placed, user_headers, admin_headers):
        assert client.get("/api/orders", headers=user_headers).status_code == 403
        response = client.get("/api/orders", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()[0]["customer"]["name"] == "Alice Shopper"

"""
Order builder and status manager

Creating an order is a short saga:

1. check every line against the catalog (nothing is written)
2. authorize the total with the payment gateway (no lock held)
3. reserve stock with conditional decrements, then insert the order

If step 3 fails part way, reserved stock is put back and the payment intent
is cancelled, so a failed checkout leaves no order and no stock change.
"""
import logging
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
import pricing
from auth import is_admin
from carts import clear_cart
from catalog import decrement_stock, find_product, restore_stock
from database import ensure_object_id, get_documents, utcnow
from errors import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotAuthorizedError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationFailedError,
)
from payments import PaymentGateway

logger = logging.getLogger(__name__)

# Lifecycle order; "cancelled" sits outside the forward flow
ORDER_STATUS_FLOW = ["pending", "processing", "shipped", "delivered", "completed"]
ORDER_STATUSES = ORDER_STATUS_FLOW + ["cancelled"]
TERMINAL_STATUSES = {"completed", "cancelled"}


def allowed_transitions(current: str) -> set[str]:
    """Forward moves along the flow, plus cancelling any non-terminal order."""
    if current in TERMINAL_STATUSES:
        return set()
    if current not in ORDER_STATUS_FLOW:
        # Unrecognised stored status: the only safe move is to cancel
        return {"cancelled"}
    index = ORDER_STATUS_FLOW.index(current)
    return set(ORDER_STATUS_FLOW[index + 1:]) | {"cancelled"}


def order_out(doc: dict, customer: Optional[dict] = None) -> dict:
    out = {
        "id": str(doc["_id"]),
        "user": str(doc["user"]),
        "items": [
            {
                "product": str(line["product"]),
                "name": line.get("name"),
                "quantity": line["quantity"],
                "price": line["price"],
            }
            for line in doc.get("items", [])
        ],
        "shipping_address": doc["shipping_address"],
        "payment_method": doc["payment_method"],
        "subtotal": doc.get("subtotal", 0.0),
        "shipping_cost": doc.get("shipping_cost", 0.0),
        "total_amount": doc["total_amount"],
        "currency": doc.get("currency", config.CURRENCY),
        "payment_id": doc["payment_id"],
        "status": doc.get("status", "pending"),
        "created_at": doc["created_at"],
        "updated_at": doc.get("updated_at"),
    }
    if customer is not None:
        out["customer"] = {
            "id": str(customer["_id"]),
            "name": customer.get("name"),
            "email": customer.get("email"),
        }
    return out


def _rollback(db: Database, gateway: PaymentGateway, reserved: list[tuple[str, int]], intent_id: str) -> None:
    """Undo a half-finished checkout. Every step runs even if an earlier one fails."""
    try:
        for pid, quantity in reversed(reserved):
            try:
                restore_stock(db, pid, quantity)
            except Exception:
                logger.exception("Could not restore %d units of product %s", quantity, pid)
    finally:
        gateway.cancel(intent_id)


def create_order(
    db: Database,
    gateway: PaymentGateway,
    user_id,
    items: list[dict],
    shipping_address: dict,
    payment_method: str,
) -> tuple[dict, str]:
    """Place an order and return (order document, client secret)."""
    if not items:
        raise ValidationFailedError("items", "Order must contain at least one item")

    # Availability and pricing, read-only
    lines = []
    requested: dict[str, int] = {}
    for index, item in enumerate(items):
        quantity = int(item["quantity"])
        if quantity < 1:
            raise ValidationFailedError(f"items.{index}.quantity", "Quantity must be at least 1")
        product = find_product(db, item["product"], f"items.{index}.product")
        pid = str(product["_id"])
        needed = requested.get(pid, 0) + quantity
        available = int(product.get("stock", 0))
        if available < needed:
            raise InsufficientStockError(pid, needed, available, product.get("name"))
        requested[pid] = needed
        lines.append({
            "product": product["_id"],
            "name": product.get("name"),
            "quantity": quantity,
            "price": float(product.get("price", 0)),
            "unit_cents": pricing.to_cents(product.get("price", 0)),
        })

    sums = pricing.totals((line["unit_cents"], line["quantity"]) for line in lines)

    intent = gateway.authorize(
        sums["total"],
        config.CURRENCY,
        payment_method,
        metadata={"user": str(user_id)},
    )

    reserved: list[tuple[str, int]] = []
    try:
        for pid, quantity in requested.items():
            outcome = decrement_stock(db, pid, quantity)
            if outcome.status == "not_found":
                raise ProductNotFoundError(pid)
            if not outcome.ok:
                raise InsufficientStockError(pid, quantity, outcome.available, outcome.name)
            reserved.append((pid, quantity))

        now = utcnow()
        order = {
            "user": user_id,
            "items": [
                {k: v for k, v in line.items() if k != "unit_cents"}
                for line in lines
            ],
            "shipping_address": shipping_address,
            "payment_method": payment_method,
            "subtotal": pricing.to_dollars(sums["subtotal"]),
            "shipping_cost": pricing.to_dollars(sums["shipping"]),
            "total_amount": pricing.to_dollars(sums["total"]),
            "currency": config.CURRENCY,
            "payment_id": intent.id,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        result = db["order"].insert_one(order)
        order["_id"] = result.inserted_id
    except Exception:
        logger.warning("Rolling back checkout for user %s (intent %s)", user_id, intent.id)
        _rollback(db, gateway, reserved, intent.id)
        raise

    try:
        clear_cart(db, user_id)
    except PyMongoError:
        # Best effort; the order is already committed
        logger.exception("Could not clear cart for user %s after order %s", user_id, order["_id"])

    logger.info(
        "Order %s placed by %s: %d lines, total %.2f",
        order["_id"], user_id, len(lines), order["total_amount"],
    )
    return order, intent.client_secret


def get_order(db: Database, order_id: str, user: dict) -> dict:
    """Fetch one order for its owner or an administrator."""
    if not is_admin(user):
        try:
            _id = ensure_object_id(order_id)
        except ValidationFailedError:
            raise NotAuthorizedError()
        doc = db["order"].find_one({"_id": _id})
        # Same answer whether the order is missing or someone else's
        if not doc or doc.get("user") != user["_id"]:
            raise NotAuthorizedError()
        return doc

    doc = db["order"].find_one({"_id": ensure_object_id(order_id)})
    if not doc:
        raise OrderNotFoundError(order_id)
    return doc


def list_orders(db: Database) -> list[dict]:
    """Every order, newest first, with its owner attached."""
    docs = get_documents(db, "order", sort=[("created_at", -1)])
    user_ids = list({d["user"] for d in docs})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}})} if user_ids else {}
    return [order_out(d, users.get(d["user"])) for d in docs]


def list_user_orders(db: Database, user_id) -> list[dict]:
    docs = get_documents(db, "order", {"user": user_id}, sort=[("created_at", -1)])
    return [order_out(d) for d in docs]


def update_status(db: Database, order_id: str, status: str, enforce: Optional[bool] = None) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationFailedError("status", f"Must be one of {', '.join(ORDER_STATUSES)}")
    if enforce is None:
        enforce = config.ENFORCE_STATUS_TRANSITIONS

    _id = ensure_object_id(order_id)
    doc = db["order"].find_one({"_id": _id})
    if not doc:
        raise OrderNotFoundError(order_id)

    current = doc.get("status", "pending")
    if status == current:
        return doc
    if enforce and status not in allowed_transitions(current):
        raise InvalidStatusTransitionError(current, status)

    db["order"].update_one({"_id": _id}, {"$set": {"status": status, "updated_at": utcnow()}})
    logger.info("Order %s status %s -> %s", order_id, current, status)
    return db["order"].find_one({"_id": _id})


def dashboard_stats(db: Database, low_stock_threshold: int = 5) -> dict:
    orders = get_documents(db, "order")
    by_status = {status: 0 for status in ORDER_STATUSES}
    revenue_cents = 0
    for doc in orders:
        status = doc.get("status", "pending")
        by_status[status] = by_status.get(status, 0) + 1
        if status != "cancelled":
            revenue_cents += pricing.to_cents(doc.get("total_amount", 0))
    low_stock = get_documents(db, "product", {"stock": {"$lt": low_stock_threshold}}, sort=[("stock", 1)])
    return {
        "total_products": db["product"].count_documents({}),
        "total_orders": len(orders),
        "total_revenue": pricing.to_dollars(revenue_cents),
        "orders_by_status": by_status,
        "low_stock": low_stock,
    }

"""
Cart holder

One cart document per user in the "cart" collection:
{user, items: [{product, quantity}], created_at, updated_at}
"""
import logging

from pymongo.database import Database

import pricing
from catalog import find_product
from database import ensure_object_id, utcnow
from errors import CartItemNotFoundError, InsufficientStockError

logger = logging.getLogger(__name__)


def _load(db: Database, user_id) -> list[dict]:
    doc = db["cart"].find_one({"user": user_id})
    return list(doc.get("items", [])) if doc else []


def _save(db: Database, user_id, items: list[dict]) -> None:
    now = utcnow()
    db["cart"].update_one(
        {"user": user_id},
        {"$set": {"items": items, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )


def _check_stock(product: dict, quantity: int) -> None:
    available = int(product.get("stock", 0))
    if available < quantity:
        raise InsufficientStockError(str(product["_id"]), quantity, available, product.get("name"))


def get_cart(db: Database, user_id) -> dict:
    """Cart lines enriched with current product data, plus totals."""
    lines = []
    for item in _load(db, user_id):
        product = db["product"].find_one({"_id": item["product"]})
        if not product:
            # Product was deleted since it was added
            continue
        lines.append({
            "product": {
                "id": str(product["_id"]),
                "name": product.get("name", ""),
                "price": float(product.get("price", 0)),
                "image_url": product.get("image_url"),
                "stock": int(product.get("stock", 0)),
            },
            "quantity": item["quantity"],
        })
    sums = pricing.totals((pricing.to_cents(line["product"]["price"]), line["quantity"]) for line in lines)
    return {
        "items": lines,
        "subtotal": pricing.to_dollars(sums["subtotal"]),
        "shipping": pricing.to_dollars(sums["shipping"]),
        "total": pricing.to_dollars(sums["total"]),
    }


def add_item(db: Database, user_id, product_id: str, quantity: int) -> dict:
    product = find_product(db, product_id, "productId")
    items = _load(db, user_id)
    existing = next((i for i in items if i["product"] == product["_id"]), None)
    new_quantity = quantity + (existing["quantity"] if existing else 0)
    _check_stock(product, new_quantity)
    if existing:
        existing["quantity"] = new_quantity
    else:
        items.append({"product": product["_id"], "quantity": quantity})
    _save(db, user_id, items)
    return get_cart(db, user_id)


def update_item(db: Database, user_id, product_id: str, quantity: int) -> dict:
    product = find_product(db, product_id, "productId")
    _check_stock(product, quantity)
    items = _load(db, user_id)
    existing = next((i for i in items if i["product"] == product["_id"]), None)
    if existing is None:
        raise CartItemNotFoundError(product_id)
    existing["quantity"] = quantity
    _save(db, user_id, items)
    return get_cart(db, user_id)


def remove_item(db: Database, user_id, product_id: str) -> dict:
    _id = ensure_object_id(product_id, "productId")
    items = [i for i in _load(db, user_id) if i["product"] != _id]
    _save(db, user_id, items)
    return get_cart(db, user_id)


def clear_cart(db: Database, user_id) -> None:
    db["cart"].delete_one({"user": user_id})
    logger.debug("Cleared cart for user %s", user_id)

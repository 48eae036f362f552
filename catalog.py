"""
Catalog store

Product records and the stock primitives the order builder relies on.
"""
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, ensure_object_id, get_documents, to_str_id, utcnow
from errors import ProductNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockOutcome:
    """Result of a conditional stock decrement."""

    status: Literal["reserved", "insufficient", "not_found"]
    product_id: str
    requested: int
    available: int = 0
    name: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "reserved"


def product_out(doc: dict) -> dict:
    d = to_str_id(doc)
    d["price"] = float(d.get("price", 0))
    d["stock"] = int(d.get("stock", 0))
    return d


def find_product(db: Database, product_id: str, field: str = "product") -> dict:
    doc = db["product"].find_one({"_id": ensure_object_id(product_id, field)})
    if not doc:
        raise ProductNotFoundError(str(product_id))
    return doc


def list_products(
    db: Database,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    is_organic: Optional[bool] = None,
    is_featured: Optional[bool] = None,
) -> list[dict]:
    query: dict = {}
    if category:
        query["category"] = category
    if is_organic is not None:
        query["is_organic"] = is_organic
    if is_featured is not None:
        query["is_featured"] = is_featured
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    return get_documents(db, "product", query)


def create_product(db: Database, data: dict) -> dict:
    pid = create_document(db, "product", data)
    logger.info("Created product %s (%s)", pid, data.get("name"))
    return db["product"].find_one({"_id": ensure_object_id(pid)})


def update_product(db: Database, product_id: str, changes: dict) -> dict:
    _id = ensure_object_id(product_id, "product")
    update = dict(changes)
    update["updated_at"] = utcnow()
    doc = db["product"].find_one_and_update(
        {"_id": _id},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise ProductNotFoundError(product_id)
    return doc


def delete_product(db: Database, product_id: str) -> None:
    result = db["product"].delete_one({"_id": ensure_object_id(product_id, "product")})
    if result.deleted_count == 0:
        raise ProductNotFoundError(product_id)
    logger.info("Deleted product %s", product_id)


# ----- Stock -----

def decrement_stock(db: Database, product_id: str, amount: int) -> StockOutcome:
    """Take ``amount`` units if and only if that many are on hand.

    The predicate and the decrement are a single document update, so two
    concurrent callers can never drive stock below zero.
    """
    _id = ensure_object_id(product_id, "product")
    doc = db["product"].find_one_and_update(
        {"_id": _id, "stock": {"$gte": amount}},
        {"$inc": {"stock": -amount}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is not None:
        return StockOutcome("reserved", product_id, amount, int(doc["stock"]), doc.get("name"))

    current = db["product"].find_one({"_id": _id}, {"stock": 1, "name": 1})
    if current is None:
        return StockOutcome("not_found", product_id, amount)
    return StockOutcome("insufficient", product_id, amount, int(current.get("stock", 0)), current.get("name"))


def restore_stock(db: Database, product_id: str, amount: int) -> None:
    db["product"].update_one(
        {"_id": ensure_object_id(product_id, "product")},
        {"$inc": {"stock": amount}, "$set": {"updated_at": utcnow()}},
    )
    logger.info("Restored %d units of product %s", amount, product_id)

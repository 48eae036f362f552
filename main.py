import os
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import carts
import catalog
import config
import database
import orders
from auth import (
    authenticate,
    get_current_user,
    issue_token,
    public_user,
    register_user,
    require_admin,
    seed_admin,
)
from database import get_db
from errors import (
    AuthenticationFailedError,
    CartItemNotFoundError,
    EmailAlreadyRegisteredError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotAuthorizedError,
    OrderNotFoundError,
    PaymentAuthorizationFailedError,
    ProductNotFoundError,
    StoreError,
    ValidationFailedError,
)
from payments import PaymentGateway, get_payment_gateway
from schemas import (
    CartItemIn,
    CartOut,
    CartQuantity,
    Category,
    LoginRequest,
    OrderCreate,
    OrderCreated,
    OrderOut,
    ProductIn,
    ProductOut,
    ProductUpdate,
    RegisterRequest,
    StatsOut,
    StatusUpdate,
    TokenResponse,
    UserPublic,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

app = FastAPI(title="Grocery Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Error handling -----

ERROR_STATUS_CODES: dict[type, int] = {
    ValidationFailedError: 400,
    InsufficientStockError: 400,
    AuthenticationFailedError: 401,
    NotAuthorizedError: 403,
    ProductNotFoundError: 404,
    OrderNotFoundError: 404,
    CartItemNotFoundError: 404,
    EmailAlreadyRegisteredError: 409,
    InvalidStatusTransitionError: 409,
    PaymentAuthorizationFailedError: 502,
}


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__, **exc.extra()},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" prefix
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    first = errors[0] if errors else {"field": "body", "message": "Invalid request"}
    return JSONResponse(
        status_code=400,
        content={
            "detail": f"Invalid {first['field']}: {first['message']}",
            "error_type": ValidationFailedError.__name__,
            "field": first["field"],
            "errors": errors,
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.on_event("startup")
def on_startup():
    if database.db is None:
        return
    try:
        database.ensure_indexes(database.db)
        seed_admin(database.db, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
    except PyMongoError as e:
        logger.warning("Database setup skipped: %s", e)


# ----- Health -----
@app.get("/")
def read_root():
    return {"message": "Grocery Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


# ----- Auth -----
@app.post("/api/auth/register", response_model=TokenResponse, status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    user = register_user(db, payload.name, str(payload.email), payload.password)
    return {"token": issue_token(str(user["_id"])), "user": public_user(user)}


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = authenticate(db, str(payload.email), payload.password)
    return {"token": issue_token(str(user["_id"])), "user": public_user(user)}


@app.get("/api/auth/me", response_model=UserPublic)
def me(user: dict = Depends(get_current_user)):
    return public_user(user)


# ----- Products -----
@app.get("/api/products", response_model=List[ProductOut])
def list_products(
    category: Optional[Category] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    is_organic: Optional[bool] = Query(None, alias="isOrganic"),
    is_featured: Optional[bool] = Query(None, alias="isFeatured"),
    db: Database = Depends(get_db),
):
    docs = catalog.list_products(db, category, min_price, max_price, is_organic, is_featured)
    return [catalog.product_out(d) for d in docs]


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.product_out(catalog.find_product(db, product_id, "id"))


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(product: ProductIn, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    doc = catalog.create_product(db, product.model_dump(mode="json"))
    return catalog.product_out(doc)


@app.put("/api/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: str,
    changes: ProductUpdate,
    db: Database = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    data = changes.model_dump(mode="json", exclude_unset=True)
    if not data:
        raise ValidationFailedError("body", "No fields to update")
    return catalog.product_out(catalog.update_product(db, product_id, data))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    catalog.delete_product(db, product_id)
    return {"message": "Product deleted successfully"}


# ----- Cart -----
@app.get("/api/cart", response_model=CartOut)
def get_cart(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return carts.get_cart(db, user["_id"])


@app.post("/api/cart/add", response_model=CartOut)
def add_to_cart(item: CartItemIn, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return carts.add_item(db, user["_id"], item.product_id, item.quantity)


@app.put("/api/cart/update/{product_id}", response_model=CartOut)
def update_cart_item(
    product_id: str,
    body: CartQuantity,
    db: Database = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    return carts.update_item(db, user["_id"], product_id, body.quantity)


@app.delete("/api/cart/remove/{product_id}", response_model=CartOut)
def remove_from_cart(product_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return carts.remove_item(db, user["_id"], product_id)


@app.delete("/api/cart/clear")
def clear_cart(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    carts.clear_cart(db, user["_id"])
    return {"message": "Cart cleared successfully"}


# ----- Orders -----
@app.get("/api/orders", response_model=List[OrderOut])
def list_orders(db: Database = Depends(get_db), admin: dict = Depends(require_admin)):
    return orders.list_orders(db)


@app.get("/api/orders/my-orders", response_model=List[OrderOut])
def my_orders(db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    return orders.list_user_orders(db, user["_id"])


@app.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    doc = orders.get_order(db, order_id, user)
    owner = db["user"].find_one({"_id": doc["user"]})
    return orders.order_out(doc, owner)


@app.post("/api/orders", response_model=OrderCreated, status_code=201)
def create_order(
    req: OrderCreate,
    db: Database = Depends(get_db),
    user: dict = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    order, client_secret = orders.create_order(
        db,
        gateway,
        user["_id"],
        [item.model_dump() for item in req.items],
        req.shipping_address.model_dump(),
        req.payment_method,
    )
    return {"order": orders.order_out(order), "client_secret": client_secret}


@app.patch("/api/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(
    order_id: str,
    body: StatusUpdate,
    db: Database = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    return orders.order_out(orders.update_status(db, order_id, body.status))


# ----- Admin -----
@app.get("/api/admin/stats", response_model=StatsOut)
def admin_stats(
    low_stock: int = Query(5, alias="lowStock", ge=0),
    db: Database = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    stats = orders.dashboard_stats(db, low_stock)
    stats["low_stock"] = [catalog.product_out(p) for p in stats["low_stock"]]
    return stats


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

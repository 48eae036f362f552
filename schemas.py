"""
API and Database Schemas

Grocery storefront models. Request bodies are validated here before any
domain logic runs. JSON uses camelCase; Python attributes use snake_case.
Collections: "user", "product", "cart", "order".
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl, field_validator
from pydantic.alias_generators import to_camel

Category = Literal["fruits", "vegetables", "dairy", "meat", "grains", "beverages", "snacks"]
PaymentMethod = Literal["credit_card", "debit_card", "paypal"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "completed", "cancelled"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----- Users -----

class RegisterRequest(ApiModel):
    name: str = Field(..., min_length=1, max_length=80, description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Plain password, hashed server-side")


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class UserPublic(ApiModel):
    id: str
    name: str
    email: EmailStr
    role: Literal["user", "admin"] = "user"


class TokenResponse(ApiModel):
    token: str
    user: UserPublic


# ----- Products -----

class ProductIn(ApiModel):
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field(..., min_length=1, description="Product description")
    price: float = Field(..., ge=0, description="Price in USD")
    category: Category = Field(..., description="Catalog category")
    image_url: HttpUrl = Field(..., description="Image URL")
    stock: int = Field(0, ge=0, description="Units in stock")
    is_organic: bool = False
    is_featured: bool = False


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    image_url: Optional[HttpUrl] = None
    stock: Optional[int] = Field(None, ge=0)
    is_organic: Optional[bool] = None
    is_featured: Optional[bool] = None

    @field_validator("*", mode="before")
    @classmethod
    def reject_null(cls, value):
        # Omitted fields stay unchanged; null is never a stored value
        if value is None:
            raise ValueError("may not be null")
        return value


class ProductOut(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    price: float
    category: Category
    image_url: Optional[str] = None
    stock: int
    is_organic: bool = False
    is_featured: bool = False


# ----- Cart -----

class CartItemIn(ApiModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CartQuantity(ApiModel):
    quantity: int = Field(..., ge=1)


class CartProduct(ApiModel):
    id: str
    name: str
    price: float
    image_url: Optional[str] = None
    stock: int


class CartLine(ApiModel):
    product: CartProduct
    quantity: int


class CartOut(ApiModel):
    items: List[CartLine]
    subtotal: float
    shipping: float
    total: float


# ----- Orders -----

class OrderItemIn(ApiModel):
    # Any client-side price is ignored; the catalog price is authoritative
    product: str = Field(..., description="Product ObjectId as string")
    quantity: int = Field(..., ge=1)


class ShippingAddress(ApiModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1, description="Street address")
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1, description="State or region")
    zip_code: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class OrderCreate(ApiModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod


class OrderLine(ApiModel):
    product: str
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price frozen at order time")


class Customer(ApiModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class OrderOut(ApiModel):
    id: str
    user: str
    customer: Optional[Customer] = None
    items: List[OrderLine]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    subtotal: float
    shipping_cost: float
    total_amount: float
    currency: str = "usd"
    payment_id: str
    status: OrderStatus = "pending"
    created_at: datetime
    updated_at: Optional[datetime] = None


class OrderCreated(ApiModel):
    order: OrderOut
    client_secret: str


class StatusUpdate(ApiModel):
    status: OrderStatus


# ----- Admin -----

class StatsOut(ApiModel):
    total_products: int
    total_orders: int
    total_revenue: float
    orders_by_status: Dict[str, int]
    low_stock: List[ProductOut]

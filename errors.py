"""Custom exceptions for the storefront API."""

from typing import Any, Optional


class StoreError(Exception):
    """Base exception for all storefront errors."""

    def extra(self) -> dict[str, Any]:
        """Fields added to the JSON error body next to ``detail``."""
        return {}


class ValidationFailedError(StoreError):
    """Raised when a request field is missing or malformed."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        self.message = message or "Invalid value"
        super().__init__(f"Invalid {field}: {self.message}")

    def extra(self) -> dict[str, Any]:
        return {"field": self.field}


class AuthenticationFailedError(StoreError):
    """Raised when no valid access token accompanies the request."""

    def __init__(self, reason: str = "Not authenticated"):
        super().__init__(reason)


class NotAuthorizedError(StoreError):
    """Raised when the caller lacks the required role or ownership."""

    def __init__(self, reason: str = "Not authorized"):
        super().__init__(reason)


class EmailAlreadyRegisteredError(StoreError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already registered: {email}")


class ProductNotFoundError(StoreError):
    """Raised when a referenced product doesn't exist."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")

    def extra(self) -> dict[str, Any]:
        return {"product": self.product_id}


class OrderNotFoundError(StoreError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class CartItemNotFoundError(StoreError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__("Item not found in cart")


class InsufficientStockError(StoreError):
    """Raised when a product can't cover the requested quantity."""

    def __init__(self, product_id: str, requested: int, available: int, name: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        label = name or product_id
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}"
        )

    def extra(self) -> dict[str, Any]:
        return {
            "product": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class PaymentAuthorizationFailedError(StoreError):
    """Raised when the payment gateway is unreachable or declines."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Payment authorization failed: {reason}")


class InvalidStatusTransitionError(StoreError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")

    def extra(self) -> dict[str, Any]:
        return {"current": self.current, "requested": self.requested}

"""Money helpers. All arithmetic is done in integer cents."""

import config


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


def to_dollars(cents: int) -> float:
    return round(cents / 100, 2)


def shipping_for(subtotal_cents: int) -> int:
    """Flat surcharge, only when something is being bought."""
    return config.SHIPPING_SURCHARGE_CENTS if subtotal_cents > 0 else 0


def totals(lines) -> dict:
    """Subtotal, shipping and total in cents for (unit_cents, quantity) pairs."""
    subtotal = sum(unit * qty for unit, qty in lines)
    shipping = shipping_for(subtotal)
    return {"subtotal": subtotal, "shipping": shipping, "total": subtotal + shipping}

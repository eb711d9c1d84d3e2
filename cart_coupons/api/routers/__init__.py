from . import carts
from . import coupons
from . import health
from . import products

__all__ = [
    "carts",
    "coupons",
    "health",
    "products",
]

from coffee_commerce.models.product import Product
from coffee_commerce.models.price import Price, PriceType, RECURRING_INTERVALS
from coffee_commerce.models.variant import Variant, options_key
from coffee_commerce.models.sync_hash import SyncHash, SyncHashHistory, SyncSource

__all__ = [
    "Product",
    "Price",
    "PriceType",
    "RECURRING_INTERVALS",
    "Variant",
    "options_key",
    "SyncHash",
    "SyncHashHistory",
    "SyncSource",
]

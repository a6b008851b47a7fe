from coffee_commerce.schemas.product import Product, ProductCreate, ProductList
from coffee_commerce.schemas.price import Price, PriceCreate, PriceUpdate
from coffee_commerce.schemas.variant import Variant, AssignPriceRequest
from coffee_commerce.schemas.admin import SyncReport, SyncResult, SyncSummary, HealthStatus

__all__ = [
    "Product", "ProductCreate", "ProductList",
    "Price", "PriceCreate", "PriceUpdate",
    "Variant", "AssignPriceRequest",
    "SyncReport", "SyncResult", "SyncSummary", "HealthStatus",
]

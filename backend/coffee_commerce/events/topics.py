"""Canonical event bus topics."""

# Products
PRODUCT_CREATED = "products.created"
PRODUCT_UPDATED = "products.updated"
PRODUCT_DELETED = "products.deleted"
PRODUCT_STOCK_UPDATED = "products.stock_updated"
PRODUCT_LOW_STOCK = "products.low_stock"

# Variants
VARIANT_CREATED = "variants.created"
VARIANT_UPDATED = "variants.updated"
VARIANT_QUEUED = "variants.queued"
VARIANT_DELETED = "variants.deleted"
VARIANT_PRICE_ASSIGNED = "variants.price_assigned"

# Prices
PRICE_CREATED = "prices.created"
PRICE_UPDATED = "prices.updated"
PRICE_DELETED = "prices.deleted"

# Reserved for customer, subscription and order services
CUSTOMER_CREATED = "customers.created"
CUSTOMER_UPDATED = "customers.updated"
CUSTOMER_DELETED = "customers.deleted"

SUBSCRIPTION_CREATED = "subscriptions.created"
SUBSCRIPTION_UPDATED = "subscriptions.updated"
SUBSCRIPTION_CANCELED = "subscriptions.canceled"
SUBSCRIPTION_PAUSED = "subscriptions.paused"
SUBSCRIPTION_RESUMED = "subscriptions.resumed"
SUBSCRIPTION_RENEWED = "subscriptions.renewed"

ORDER_CREATED = "orders.created"
ORDER_STATUS_UPDATED = "orders.status_updated"
ORDER_SHIPPED = "orders.shipped"
ORDER_DELIVERED = "orders.delivered"

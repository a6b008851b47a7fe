"""Event payload builders. Field names match what downstream consumers read."""
from datetime import datetime, timezone
from typing import Optional

from coffee_commerce.models import Price, Product, Variant


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def product_payload(product: Product) -> dict:
    return {
        "product_id": str(product.id),
        "provider_id": product.provider_id or "",
        "name": product.name,
        "description": product.description or "",
        "image_url": product.image_url,
        "active": product.active,
        "archived": product.archived,
        "allow_subscription": product.allow_subscription,
        "stock_level": product.stock_level,
        "options": product.options or {},
        "created_at": _iso(product.created_at),
        "updated_at": _iso(product.updated_at),
    }


def price_payload(price: Price) -> dict:
    return {
        "price_id": str(price.id),
        "product_id": str(price.product_id),
        "provider_price_id": price.provider_id or "",
        "name": price.name,
        "amount": price.amount,
        "currency": price.currency,
        "type": price.type.value,
        "interval": price.interval,
        "interval_count": price.interval_count,
        "active": price.active,
        "updated_at": _iso(price.updated_at),
    }


def variant_created_payload(variant: Variant, price: Optional[Price]) -> dict:
    return {
        "variant_id": str(variant.id),
        "product_id": str(variant.product_id),
        "price_id": str(variant.price_id) if variant.price_id else None,
        "provider_product_id": variant.provider_product_id or "",
        "provider_price_id": variant.provider_price_id or "",
        "weight": variant.weight_grams,
        "options": variant.options or {},
        "amount": price.amount if price else None,
        "currency": price.currency if price else None,
        "active": variant.active,
        "stock_level": variant.stock_level,
        "created_at": _iso(variant.created_at),
    }


def variant_updated_payload(variant: Variant, price: Optional[Price], update_source: str) -> dict:
    payload = {
        "variant_id": str(variant.id),
        "product_id": str(variant.product_id),
        "price_id": str(variant.price_id) if variant.price_id else None,
        "provider_product_id": variant.provider_product_id or "",
        "provider_price_id": variant.provider_price_id or "",
        "weight": variant.weight_grams,
        "options": variant.options or {},
        "active": variant.active,
        "stock_level": variant.stock_level,
        "updated_at": _iso(variant.updated_at) or _now(),
        "update_source": update_source,
    }
    if price is not None:
        payload.update({
            "amount": price.amount,
            "currency": price.currency,
            "price_type": price.type.value,
            "interval": price.interval,
            "interval_count": price.interval_count,
        })
    return payload


def variant_deleted_payload(variant: Variant, product_name: Optional[str], delete_source: str) -> dict:
    payload = {
        "variant_id": str(variant.id),
        "product_id": str(variant.product_id),
        "provider_product_id": variant.provider_product_id or "",
        "deleted_at": _now(),
        "delete_source": delete_source,
    }
    if product_name:
        payload["product_name"] = product_name
    return payload


def variant_queued_payload(product: Product, options: dict, default_price: int, currency: str) -> dict:
    return {
        "product_id": str(product.id),
        "product_name": product.name,
        "description": product.description or "",
        "image_url": product.image_url,
        "options": options,
        "default_price": default_price,
        "currency": currency,
        "queued_at": _now(),
    }


def price_assigned_payload(variant: Variant, old_price_id, price: Price) -> dict:
    return {
        "variant_id": str(variant.id),
        "product_id": str(variant.product_id),
        "old_price_id": str(old_price_id) if old_price_id else None,
        "new_price_id": str(price.id),
        "provider_price_id": price.provider_id or "",
        "assigned_at": _now(),
    }

"""
Price Service

Prices created through the API are originated in Stripe first and stored
with the Stripe price id, so the echoed price.created webhook is a no-op.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from coffee_commerce.database import utcnow
from coffee_commerce.errors import (
    ConflictError,
    PriceNotFoundError,
    ServiceUnavailableError,
    ValidationError,
    VariantNotFoundError,
)
from coffee_commerce.events import EventBus
from coffee_commerce.events import topics
from coffee_commerce.events.payloads import price_assigned_payload, price_payload
from coffee_commerce.models import Price, PriceType, Variant
from coffee_commerce.schemas.price import PriceCreate, PriceUpdate
from coffee_commerce.services.product_service import get_product
from coffee_commerce.services.provider import ProviderClient, ProviderError

logger = logging.getLogger(__name__)


def get_price(db: Session, price_id: uuid.UUID) -> Price:
    price = db.query(Price).filter(Price.id == price_id).first()
    if not price:
        raise PriceNotFoundError(f"Price {price_id} not found")
    return price


def list_prices(db: Session, product_id: Optional[uuid.UUID] = None, active_only: bool = False) -> list[Price]:
    query = db.query(Price)
    if product_id:
        query = query.filter(Price.product_id == product_id)
    if active_only:
        query = query.filter(Price.active.is_(True))
    return query.order_by(Price.created_at, Price.id).all()


def create_price(db: Session, bus: EventBus, provider: ProviderClient, data: PriceCreate) -> Price:
    product = get_product(db, data.product_id)
    if not product.provider_id:
        raise ValidationError(
            "Product is not linked to a Stripe product yet",
            validation_errors={"product_id": "product has no Stripe id"},
        )

    recurring = data.type == PriceType.RECURRING
    try:
        provider_price = provider.create_price(
            product.provider_id,
            data.amount,
            data.currency,
            recurring=recurring,
            interval=data.interval,
            interval_count=data.interval_count,
            nickname=data.name,
        )
    except ProviderError as e:
        logger.error(f"Could not create Stripe price for product {product.id}: {e}")
        raise ServiceUnavailableError("Stripe is unavailable, price not created") from e

    price = Price(**data.model_dump(), provider_id=provider_price.id)
    db.add(price)
    db.commit()
    db.refresh(price)
    logger.info(f"Created price {price.id} ({price.name}) as {price.provider_id}")

    bus.publish(topics.PRICE_CREATED, price_payload(price))
    return price


def update_price(db: Session, bus: EventBus, price_id: uuid.UUID, data: PriceUpdate) -> Price:
    price = get_price(db, price_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(price, field, value)
    if changes:
        price.updated_at = utcnow()
        db.commit()
        db.refresh(price)
        bus.publish(topics.PRICE_UPDATED, price_payload(price))
    return price


def variants_for_price(db: Session, price_id: uuid.UUID) -> list[Variant]:
    get_price(db, price_id)
    return db.query(Variant).filter(Variant.price_id == price_id).order_by(Variant.created_at).all()


def delete_price(db: Session, bus: EventBus, price_id: uuid.UUID) -> None:
    price = get_price(db, price_id)
    in_use = db.query(Variant).filter(Variant.price_id == price.id).count()
    if in_use:
        raise ConflictError(
            "Price is assigned to variants",
            code="PRICE_IN_USE",
            details={"variant_count": in_use},
        )

    payload = price_payload(price)
    db.delete(price)
    db.commit()

    bus.publish(topics.PRICE_DELETED, payload)


def assign_price_to_variant(db: Session, bus: EventBus, variant_id: uuid.UUID, price_id: uuid.UUID) -> Variant:
    variant = db.query(Variant).filter(Variant.id == variant_id).first()
    if not variant:
        raise VariantNotFoundError(f"Variant {variant_id} not found")
    price = get_price(db, price_id)

    if price.product_id != variant.product_id:
        raise ValidationError(
            "Price belongs to a different product",
            validation_errors={"price_id": "price and variant must belong to the same product"},
        )
    if not price.active:
        raise ValidationError(
            "Price is not active",
            validation_errors={"price_id": "price is inactive"},
        )

    old_price_id = variant.price_id
    variant.price_id = price.id
    variant.provider_price_id = price.provider_id
    variant.updated_at = utcnow()
    db.commit()
    db.refresh(variant)

    bus.publish(topics.VARIANT_PRICE_ASSIGNED, price_assigned_payload(variant, old_price_id, price))
    return variant

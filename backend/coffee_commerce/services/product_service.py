"""
Product Service

Local catalog products. Creating a product originates its Stripe record and
publishes products.created, which drives variant generation.
"""
import logging
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from coffee_commerce.database import utcnow
from coffee_commerce.errors import ConflictError, ProductNotFoundError, ServiceUnavailableError
from coffee_commerce.events import EventBus
from coffee_commerce.events import topics
from coffee_commerce.events.payloads import product_payload
from coffee_commerce.models import Price, Product, Variant
from coffee_commerce.schemas.product import ProductCreate
from coffee_commerce.services.provider import ProviderClient, ProviderError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def list_products(
    db: Session,
    offset: int = 0,
    limit: int = 20,
    include_inactive: bool = False,
    include_archived: bool = False,
) -> tuple[list[Product], int]:
    query = db.query(Product)
    if not include_inactive:
        query = query.filter(Product.active.is_(True))
    if not include_archived:
        query = query.filter(Product.archived.is_(False))
    total = query.count()
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    items = query.order_by(Product.name, Product.id).offset(max(offset, 0)).limit(limit).all()
    return items, total


def get_product(db: Session, product_id: uuid.UUID) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def _name_taken(db: Session, name: str) -> bool:
    return db.query(Product.id).filter(
        func.lower(Product.name) == name.lower(),
        Product.archived.is_(False),
    ).first() is not None


def create_product(db: Session, bus: EventBus, provider: ProviderClient, data: ProductCreate) -> Product:
    if _name_taken(db, data.name):
        raise ConflictError(
            f"A product named {data.name!r} already exists",
            code="DUPLICATE_PRODUCT",
            details={"name": data.name},
        )

    product = Product(**data.model_dump())
    db.add(product)
    db.flush()

    try:
        provider_product = provider.create_product(
            name=product.name,
            description=product.description or "",
            images=[product.image_url] if product.image_url else None,
            metadata={"original_product_id": str(product.id)},
        )
    except ProviderError as e:
        db.rollback()
        logger.error(f"Could not create Stripe product for {data.name!r}: {e}")
        raise ServiceUnavailableError("Stripe is unavailable, product not created") from e

    product.provider_id = provider_product.id
    db.commit()
    db.refresh(product)
    logger.info(f"Created product {product.id} ({product.name}) as {product.provider_id}")

    bus.publish(topics.PRODUCT_CREATED, product_payload(product))
    return product


def archive_product(db: Session, bus: EventBus, product_id: uuid.UUID) -> Product:
    product = get_product(db, product_id)
    if product.archived:
        return product

    product.archived = True
    product.active = False
    product.updated_at = utcnow()
    db.commit()
    db.refresh(product)

    bus.publish(topics.PRODUCT_UPDATED, product_payload(product))
    return product


def delete_product(db: Session, bus: EventBus, product_id: uuid.UUID) -> None:
    product = get_product(db, product_id)
    variant_count = db.query(Variant).filter(Variant.product_id == product.id).count()
    if variant_count:
        raise ConflictError(
            "Product has variants; archive it instead",
            code="FOREIGN_KEY_CONSTRAINT",
            details={"variant_count": variant_count},
        )

    payload = product_payload(product)
    db.delete(product)
    db.commit()
    logger.info(f"Deleted product {product_id}")

    bus.publish(topics.PRODUCT_DELETED, payload)


def list_variants(db: Session, product_id: uuid.UUID) -> list[Variant]:
    get_product(db, product_id)
    return (
        db.query(Variant)
        .filter(Variant.product_id == product_id)
        .order_by(Variant.created_at, Variant.id)
        .all()
    )


def list_prices(db: Session, product_id: uuid.UUID) -> list[Price]:
    get_product(db, product_id)
    return (
        db.query(Price)
        .filter(Price.product_id == product_id)
        .order_by(Price.created_at, Price.id)
        .all()
    )

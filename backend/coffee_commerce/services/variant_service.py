"""
Variant Generation

Expands a product's option matrix into variants. products.created queues one
variants.queued event per option combination; each queued combination becomes
a Stripe product plus default price and a local Variant bound to them.
"""
import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from coffee_commerce.events import EventBus, Subscription, decode_envelope
from coffee_commerce.events import topics
from coffee_commerce.events.payloads import variant_created_payload, variant_queued_payload
from coffee_commerce.models import Price, PriceType, Product, SyncSource, Variant, options_key
from coffee_commerce.services.options import filter_options, option_combinations, parse_weight_grams
from coffee_commerce.services.provider import ProviderClient
from coffee_commerce.services.sync_hash import SyncHashStore, compute_provider_product_hash

logger = logging.getLogger(__name__)

DEFAULT_VARIANT_PRICE = 1000
DEFAULT_VARIANT_CURRENCY = "USD"


def variant_display_name(product_name: str, options: dict[str, str]) -> str:
    if not options:
        return product_name
    return f"{product_name} - {', '.join(options.values())}"


class VariantGenerator:
    def __init__(self, session_factory: Callable[[], Session], bus: EventBus, provider: ProviderClient):
        self.session_factory = session_factory
        self.bus = bus
        self.provider = provider

    def register(self) -> list[Subscription]:
        return [
            self.bus.subscribe(topics.PRODUCT_CREATED, self.on_product_created),
            self.bus.subscribe(topics.VARIANT_QUEUED, self.on_variant_queued),
        ]

    def on_product_created(self, data: bytes):
        payload = decode_envelope(data)["payload"]
        db = self.session_factory()
        try:
            product = db.query(Product).filter(Product.id == uuid.UUID(payload["product_id"])).first()
            if not product:
                logger.warning(f"products.created for unknown product {payload['product_id']}")
                return
            queued = self.queued_payloads(product)
        finally:
            db.close()

        for queued_payload in queued:
            self.bus.publish(topics.VARIANT_QUEUED, queued_payload)
        logger.info(f"Queued {len(queued)} variants for product {payload['product_id']}")

    def queued_payloads(self, product: Product) -> list[dict]:
        return [
            variant_queued_payload(product, options, DEFAULT_VARIANT_PRICE, DEFAULT_VARIANT_CURRENCY)
            for options in option_combinations(product.options)
        ]

    def on_variant_queued(self, data: bytes):
        payload = decode_envelope(data)["payload"]
        db = self.session_factory()
        try:
            product = db.query(Product).filter(Product.id == uuid.UUID(payload["product_id"])).first()
            if not product:
                logger.warning(f"variants.queued for unknown product {payload['product_id']}")
                return
            self.create_variant(
                db,
                product,
                payload.get("options") or {},
                amount=payload.get("default_price") or DEFAULT_VARIANT_PRICE,
                currency=payload.get("currency") or DEFAULT_VARIANT_CURRENCY,
            )
        finally:
            db.close()

    def create_variant(
        self,
        db: Session,
        product: Product,
        options: dict[str, str],
        amount: int = DEFAULT_VARIANT_PRICE,
        currency: str = DEFAULT_VARIANT_CURRENCY,
    ) -> Optional[Variant]:
        """Materialize one option combination. Returns None when it already exists or is no longer offered."""
        if filter_options(product, options) != options:
            logger.warning(f"Skipping queued variant {options} for product {product.id}, options changed")
            return None

        existing = (
            db.query(Variant)
            .filter(Variant.product_id == product.id, Variant.options_key == options_key(options))
            .first()
        )
        if existing:
            logger.info(f"Variant {options} for product {product.id} already exists")
            return None

        name = variant_display_name(product.name, options)
        provider_product = self.provider.create_product(
            name=name,
            description=product.description or "",
            images=[product.image_url] if product.image_url else None,
            metadata={"product_id": str(product.id), **options},
        )
        provider_price = self.provider.create_price(provider_product.id, amount, currency)

        price = Price(
            product_id=product.id,
            name=f"{name} - Default Price",
            amount=amount,
            currency=currency.upper(),
            type=PriceType.ONE_TIME,
            active=True,
            provider_id=provider_price.id,
        )
        db.add(price)
        db.flush()

        weight = parse_weight_grams(options["weight"]) if options.get("weight") else product.base_weight_grams
        variant = Variant(
            product_id=product.id,
            price_id=price.id,
            provider_product_id=provider_product.id,
            provider_price_id=provider_price.id,
            active=product.active,
            stock_level=0,
            weight_grams=weight,
            options=options,
        )
        db.add(variant)
        db.commit()

        # Stripe echoes product.updated for this record; the stored hash makes that a no-op.
        SyncHashStore(db).upsert(
            variant.id,
            provider_product.id,
            compute_provider_product_hash(provider_product),
            SyncSource.LOCAL_API,
        )
        logger.info(f"Created variant {variant.id} ({name}) as {provider_product.id}")

        self.bus.publish(topics.VARIANT_CREATED, variant_created_payload(variant, price))
        return variant

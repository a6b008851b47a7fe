"""
Stripe Webhook Ingestor

Verifies signed Stripe events and applies product/price events to local
variants and prices.

A Stripe product is one sellable SKU, so product.* events map to local
Variants. product.updated is gated by the sync hash store: a payload whose
content hash matches the last applied hash is acknowledged without any write.
Every verified event is acknowledged with 200; failures only show up in logs
and metrics, because a non-2xx makes Stripe retry.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_commerce.database import utcnow
from coffee_commerce.events import EventBus, EventPublishError
from coffee_commerce.events import topics
from coffee_commerce.events.payloads import (
    price_payload,
    variant_created_payload,
    variant_deleted_payload,
    variant_updated_payload,
)
from coffee_commerce.metrics import WebhookMetrics, webhook_metrics
from coffee_commerce.models import Price, PriceType, Product, SyncSource, Variant, RECURRING_INTERVALS, options_key
from coffee_commerce.services.options import (
    DEFAULT_WEIGHT_GRAMS,
    filter_options,
    parse_weight_grams,
)
from coffee_commerce.services.provider import ProviderPrice, ProviderProduct
from coffee_commerce.services.sync_hash import (
    RESERVED_METADATA_KEYS,
    SyncHashStore,
    compute_provider_product_hash,
)

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024

PLACEHOLDER_PRICE_AMOUNT = 1000
PLACEHOLDER_PRICE_CURRENCY = "USD"

PRODUCT_REFERENCE_KEYS = ("product_id", "original_product_id")
DIRECT_OPTION_KEYS = ("weight", "grind")
VARIANT_OPTION_PREFIX = "variant_"

# Acknowledged and logged only; checkout, billing and customers live elsewhere.
STUB_EVENT_PREFIXES = (
    "checkout.session.",
    "person.",
    "subscription_schedule.",
    "customer.",
    "subscription.",
    "invoice.",
)

INTERVAL_ADVERBS = {"week": "Weekly", "month": "Monthly", "year": "Annual"}

APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"
FAILED = "failed"


class WebhookSignatureError(Exception):
    """Signature header missing, malformed or not matching the payload."""


class WebhookEventError(Exception):
    """A verified event that cannot be applied to local state."""


@dataclass
class WebhookResult:
    outcome: str
    reason: str = ""


def verify_signature(payload: bytes, sig_header: str, secret: str, tolerance: int = 300) -> str:
    """Check the Stripe-Signature header and return the payload as text."""
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe signature")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookSignatureError("Payload is not valid UTF-8") from e
    try:
        # verify_header compares signatures in constant time
        stripe.WebhookSignature.verify_header(text, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e
    return text


def format_amount(amount: int) -> str:
    return f"{Decimal(amount) / 100:.2f}"


def synthesize_price_name(product_name: str, price: ProviderPrice) -> str:
    """
    Display name for a Stripe price.

    Examples:
        nickname "Launch offer" -> "Launch offer"
        monthly 1500 usd -> "Yirgacheffe - Monthly (15.00 USD / month)"
        every 2 weeks -> "Yirgacheffe - 2 weeks (8.00 USD / week)"
        one-time 1200 usd -> "Yirgacheffe - One-time (12.00 USD)"
    """
    if price.nickname:
        return price.nickname
    amount = format_amount(price.unit_amount)
    currency = price.currency.upper()
    if price.recurring:
        interval = price.recurring.interval
        count = price.recurring.interval_count
        if count > 1:
            phrase = f"{count} {interval}s"
        else:
            phrase = INTERVAL_ADVERBS.get(interval, interval)
        return f"{product_name} - {phrase} ({amount} {currency} / {interval})"
    return f"{product_name} - One-time ({amount} {currency})"


def _from_unix(timestamp: Optional[int]) -> datetime:
    if timestamp:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
    return utcnow()


class WebhookIngestor:
    """Applies verified Stripe events to the catalog. One instance per request."""

    def __init__(
        self,
        db: Session,
        bus: EventBus,
        hash_store: Optional[SyncHashStore] = None,
        metrics: Optional[WebhookMetrics] = None,
    ):
        self.db = db
        self.bus = bus
        self.hash_store = hash_store or SyncHashStore(db)
        self.metrics = metrics or webhook_metrics
        self._handlers: dict[str, Callable[[dict], WebhookResult]] = {
            "product.created": self.handle_product_created,
            "product.updated": self.handle_product_updated,
            "product.deleted": self.handle_product_deleted,
            "price.created": self.handle_price_created,
            "price.updated": self.handle_price_updated,
            "price.deleted": self.handle_price_deleted,
        }

    # ============== Dispatch ==============

    def process(self, payload: str | bytes) -> WebhookResult:
        """Decode a verified event envelope and run its handler. Never raises."""
        try:
            event = json.loads(payload)
        except ValueError as e:
            self.metrics.failed.labels(event_type="undecodable").inc()
            logger.error(f"Could not decode verified webhook payload: {e}")
            return WebhookResult(FAILED, "undecodable")
        return self.dispatch(event)

    def _malformed(self, event: Any) -> Optional[str]:
        if not isinstance(event, dict):
            return f"event is a {type(event).__name__}, not an object"
        if not isinstance(event.get("type") or "", str):
            return "event type is not a string"
        data = event.get("data")
        if data is not None and not isinstance(data, dict):
            return "event data is not an object"
        obj = (data or {}).get("object")
        if obj is not None and not isinstance(obj, dict):
            return "event data.object is not an object"
        return None

    def dispatch(self, event: Any) -> WebhookResult:
        problem = self._malformed(event)
        if problem:
            self.metrics.failed.labels(event_type="malformed").inc()
            logger.error(f"Malformed webhook event: {problem}")
            return WebhookResult(FAILED, "malformed")

        event_id = event.get("id")
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}
        self.metrics.received.labels(event_type=event_type).inc()

        handler = self._handlers.get(event_type)
        if handler is None:
            if event_type.startswith(STUB_EVENT_PREFIXES):
                logger.info(f"Received {event_type} ({event_id}), acknowledged without local changes")
                self.metrics.skipped.labels(event_type=event_type, reason="stub").inc()
                return WebhookResult(IGNORED, "stub")
            logger.info(f"Unhandled Stripe event type {event_type} ({event_id})")
            self.metrics.skipped.labels(event_type=event_type, reason="unhandled").inc()
            return WebhookResult(IGNORED, "unhandled")

        try:
            result = handler(obj)
        except Exception as e:
            self.db.rollback()
            self.metrics.failed.labels(event_type=event_type).inc()
            logger.error(f"Error handling webhook {event_type} ({event_id}): {e}", exc_info=True)
            return WebhookResult(FAILED, str(e))

        if result.outcome == SKIPPED:
            self.metrics.skipped.labels(event_type=event_type, reason=result.reason).inc()
            logger.info(f"Skipped {event_type} ({event_id}): {result.reason}")
        else:
            logger.info(f"Applied {event_type} ({event_id})")
        return result

    def _publish(self, topic: str, payload: dict):
        # The database write already committed; a lost event is repaired by redelivery or reconciliation.
        try:
            self.bus.publish_persistent(topic, payload)
        except EventPublishError as e:
            logger.error(f"Failed to publish {topic}: {e}")

    # ============== Lookups ==============

    def _variant_by_provider_id(self, provider_product_id: str) -> Optional[Variant]:
        if not provider_product_id:
            return None
        return self.db.query(Variant).filter(Variant.provider_product_id == provider_product_id).first()

    def _is_catalog_product_record(self, provider_product_id: str) -> bool:
        """True when the Stripe product is a local Product's own record rather than a variant SKU."""
        return self.db.query(Product.id).filter(Product.provider_id == provider_product_id).first() is not None

    def _resolve_parent(self, provider_product: ProviderProduct) -> Product:
        metadata = provider_product.metadata
        raw_id = next((metadata[k] for k in PRODUCT_REFERENCE_KEYS if metadata.get(k)), None)
        if not raw_id:
            raise WebhookEventError(f"Stripe product {provider_product.id} has no product_id metadata")
        try:
            product_id = uuid.UUID(raw_id)
        except ValueError as e:
            raise WebhookEventError(f"Invalid product_id metadata {raw_id!r} on {provider_product.id}") from e
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise WebhookEventError(f"Product {product_id} referenced by {provider_product.id} not found")
        return product

    # ============== product.* ==============

    def handle_product_created(self, obj: dict) -> WebhookResult:
        provider_product = ProviderProduct.from_dict(obj)
        if self._variant_by_provider_id(provider_product.id):
            return WebhookResult(SKIPPED, "variant_exists")
        if self._is_catalog_product_record(provider_product.id):
            return WebhookResult(SKIPPED, "catalog_product")

        product = self._resolve_parent(provider_product)
        metadata = provider_product.metadata
        skip_keys = RESERVED_METADATA_KEYS.union(PRODUCT_REFERENCE_KEYS)
        options = filter_options(product, {k: v for k, v in metadata.items() if k not in skip_keys})
        weight = parse_weight_grams(metadata["weight"]) if metadata.get("weight") else DEFAULT_WEIGHT_GRAMS

        unbound = (
            self.db.query(Variant)
            .filter(Variant.product_id == product.id, Variant.options_key == options_key(options))
            .first()
        )
        if unbound is not None:
            if unbound.provider_product_id:
                raise WebhookEventError(
                    f"Variant {unbound.id} with options {options} is already bound to {unbound.provider_product_id}"
                )
            unbound.provider_product_id = provider_product.id
            unbound.active = provider_product.active
            unbound.weight_grams = weight
            unbound.updated_at = utcnow()
            self.db.commit()
            self._publish(
                topics.VARIANT_UPDATED,
                variant_updated_payload(unbound, unbound.price, SyncSource.PROVIDER_WEBHOOK.value),
            )
            return WebhookResult(APPLIED, "bound_existing_variant")

        created_at = _from_unix(provider_product.created)
        # Placeholder until Stripe sends price.created for this product
        placeholder = Price(
            product_id=product.id,
            name=f"{provider_product.name} - Default Price",
            amount=PLACEHOLDER_PRICE_AMOUNT,
            currency=PLACEHOLDER_PRICE_CURRENCY,
            type=PriceType.ONE_TIME,
            active=True,
            provider_id=f"temp_{uuid.uuid4()}",
            created_at=created_at,
        )
        self.db.add(placeholder)
        self.db.flush()

        variant = Variant(
            product_id=product.id,
            price_id=placeholder.id,
            provider_product_id=provider_product.id,
            provider_price_id=placeholder.provider_id,
            active=provider_product.active,
            stock_level=0,
            weight_grams=weight,
            options=options,
            created_at=created_at,
        )
        self.db.add(variant)
        self.db.commit()

        self._publish(topics.VARIANT_CREATED, variant_created_payload(variant, placeholder))
        return WebhookResult(APPLIED)

    def _apply_product_fields(self, variant: Variant, provider_product: ProviderProduct):
        metadata = provider_product.metadata
        variant.active = provider_product.active

        if "weight" in metadata:
            variant.weight_grams = parse_weight_grams(metadata["weight"])

        if "stock_level" in metadata:
            try:
                variant.stock_level = max(int(metadata["stock_level"]), 0)
            except ValueError:
                logger.warning(f"Ignoring non-integer stock_level {metadata['stock_level']!r} on {provider_product.id}")

        updates = {k: metadata[k] for k in DIRECT_OPTION_KEYS if metadata.get(k)}
        for key, value in metadata.items():
            if key.startswith(VARIANT_OPTION_PREFIX) and value:
                updates[key[len(VARIANT_OPTION_PREFIX):]] = value
        if updates:
            merged = dict(variant.options or {})
            merged.update(filter_options(variant.product, updates))
            variant.options = merged

        variant.updated_at = utcnow()

    def handle_product_updated(self, obj: dict) -> WebhookResult:
        provider_product = ProviderProduct.from_dict(obj)
        variant = self._variant_by_provider_id(provider_product.id)
        if variant is None:
            if self._is_catalog_product_record(provider_product.id):
                return WebhookResult(SKIPPED, "catalog_product")
            return self.handle_product_created(obj)

        new_hash = compute_provider_product_hash(provider_product)
        if self.hash_store.matches(variant.id, provider_product.id, new_hash):
            return WebhookResult(SKIPPED, "unchanged")

        self._apply_product_fields(variant, provider_product)
        self.db.commit()

        try:
            self.hash_store.upsert(variant.id, provider_product.id, new_hash, SyncSource.PROVIDER_WEBHOOK)
        except SQLAlchemyError as e:
            # Variant is committed; the next redelivery re-applies and records the hash.
            self.db.rollback()
            logger.error(f"Failed to record sync hash for variant {variant.id}: {e}")

        self._publish(
            topics.VARIANT_UPDATED,
            variant_updated_payload(variant, variant.price, SyncSource.PROVIDER_WEBHOOK.value),
        )
        return WebhookResult(APPLIED)

    def handle_product_deleted(self, obj: dict) -> WebhookResult:
        provider_product = ProviderProduct.from_dict(obj)
        variant = self._variant_by_provider_id(provider_product.id)
        if variant is None:
            return WebhookResult(SKIPPED, "unknown_variant")
        if not variant.active:
            return WebhookResult(SKIPPED, "already_inactive")

        # Soft delete: orders and subscriptions may still reference the variant
        variant.active = False
        variant.updated_at = utcnow()
        self.db.commit()

        product_name = variant.product.name if variant.product else None
        self._publish(
            topics.VARIANT_DELETED,
            variant_deleted_payload(variant, product_name, SyncSource.PROVIDER_WEBHOOK.value),
        )
        return WebhookResult(APPLIED)

    # ============== price.* ==============

    def _price_by_provider_id(self, provider_price_id: str) -> Optional[Price]:
        return self.db.query(Price).filter(Price.provider_id == provider_price_id).first()

    def _build_price(self, provider_price: ProviderPrice, product: Product) -> Price:
        if provider_price.unit_amount <= 0:
            raise WebhookEventError(f"Price {provider_price.id} has non-positive amount {provider_price.unit_amount}")
        price = Price(
            product_id=product.id,
            name=synthesize_price_name(product.name, provider_price)[:255],
            amount=provider_price.unit_amount,
            currency=provider_price.currency.upper(),
            active=provider_price.active,
            provider_id=provider_price.id,
            created_at=_from_unix(provider_price.created),
        )
        if provider_price.recurring:
            interval = provider_price.recurring.interval
            count = provider_price.recurring.interval_count
            if interval not in RECURRING_INTERVALS or not 1 <= count <= 12:
                raise WebhookEventError(
                    f"Price {provider_price.id} has unsupported recurrence {count} x {interval}"
                )
            price.type = PriceType.RECURRING
            price.interval = interval
            price.interval_count = count
        else:
            price.type = PriceType.ONE_TIME
        return price

    def handle_price_created(self, obj: dict) -> WebhookResult:
        provider_price = ProviderPrice.from_dict(obj)
        if self._price_by_provider_id(provider_price.id):
            return WebhookResult(SKIPPED, "price_exists")

        variant = self._variant_by_provider_id(provider_price.product)
        if variant is None:
            return WebhookResult(SKIPPED, "untracked_product")

        product = self.db.query(Product).filter(Product.id == variant.product_id).first()
        if not product:
            raise WebhookEventError(f"Product {variant.product_id} for variant {variant.id} not found")

        price = self._build_price(provider_price, product)
        self.db.add(price)
        self.db.flush()

        variant.price_id = price.id
        variant.provider_price_id = price.provider_id
        variant.updated_at = utcnow()
        self.db.commit()

        self._publish(
            topics.VARIANT_UPDATED,
            variant_updated_payload(variant, price, SyncSource.PROVIDER_WEBHOOK.value),
        )
        return WebhookResult(APPLIED)

    def handle_price_updated(self, obj: dict) -> WebhookResult:
        provider_price = ProviderPrice.from_dict(obj)
        price = self._price_by_provider_id(provider_price.id)
        if price is None:
            return self.handle_price_created(obj)

        name = provider_price.nickname[:255] if provider_price.nickname else price.name
        if price.active == provider_price.active and price.name == name:
            return WebhookResult(SKIPPED, "unchanged")

        price.active = provider_price.active
        price.name = name
        price.updated_at = utcnow()
        self.db.commit()

        self._publish(topics.PRICE_UPDATED, price_payload(price))
        return WebhookResult(APPLIED)

    def handle_price_deleted(self, obj: dict) -> WebhookResult:
        provider_price = ProviderPrice.from_dict(obj)
        price = self._price_by_provider_id(provider_price.id)
        if price is None:
            return WebhookResult(SKIPPED, "unknown_price")
        if not price.active:
            return WebhookResult(SKIPPED, "already_inactive")

        # Variants may still point at this price, so it is only deactivated
        price.active = False
        price.updated_at = utcnow()
        self.db.commit()

        self._publish(topics.PRICE_DELETED, price_payload(price))
        return WebhookResult(APPLIED)

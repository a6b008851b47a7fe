"""Shared test helpers: a fake Stripe client, signed webhook payloads and event collection."""
import hashlib
import hmac
import json
import threading
import time

from coffee_commerce.events import EventBus
from coffee_commerce.services.provider import (
    ProviderClient,
    ProviderError,
    ProviderNotFoundError,
    ProviderPrice,
    ProviderProduct,
    ProviderRecurring,
)

WEBHOOK_SECRET = "whsec_test_secret"


class FakeProvider(ProviderClient):
    """In-memory Stripe stand-in with switches for failure paths."""

    def __init__(self):
        self.products: dict[str, ProviderProduct] = {}
        self.prices: dict[str, ProviderPrice] = {}
        self.broken_ids: set[str] = set()
        self.fail_listing = False
        self.fail_creates = False
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_fake{self._counter:04d}"

    def add_product(self, provider_id: str, name: str, metadata=None, active=True) -> ProviderProduct:
        product = ProviderProduct(id=provider_id, name=name, metadata=dict(metadata or {}), active=active)
        self.products[provider_id] = product
        return product

    def get_product(self, provider_id):
        if provider_id in self.broken_ids:
            raise ProviderError(f"Stripe timed out fetching {provider_id}")
        try:
            return self.products[provider_id]
        except KeyError:
            raise ProviderNotFoundError(f"{provider_id} not found") from None

    def create_product(self, name, description="", images=None, metadata=None):
        if self.fail_creates:
            raise ProviderError("Stripe unavailable")
        product = ProviderProduct(
            id=self._next("prod"),
            name=name,
            description=description or "",
            images=list(images or []),
            metadata=dict(metadata or {}),
            created=int(time.time()),
        )
        self.products[product.id] = product
        return product

    def create_price(self, provider_product_id, amount, currency, recurring=False,
                     interval=None, interval_count=None, nickname=None):
        if self.fail_creates:
            raise ProviderError("Stripe unavailable")
        price = ProviderPrice(
            id=self._next("price"),
            product=provider_product_id,
            unit_amount=amount,
            currency=currency.upper(),
            nickname=nickname,
            recurring=ProviderRecurring(interval, interval_count or 1) if recurring else None,
        )
        self.prices[price.id] = price
        return price

    def list_all_products(self):
        if self.fail_listing:
            raise ProviderError("Stripe list failed")
        return list(self.products.values())


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for the payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test") -> dict:
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}


def provider_product_obj(provider_id: str, name: str, metadata: dict, active: bool = True, **extra) -> dict:
    obj = {
        "id": provider_id,
        "object": "product",
        "name": name,
        "description": extra.pop("description", ""),
        "active": active,
        "images": extra.pop("images", []),
        "metadata": metadata,
        "created": 1700000000,
    }
    obj.update(extra)
    return obj


def provider_price_obj(price_id: str, product: str, unit_amount: int, currency: str = "usd",
                       recurring: dict | None = None, nickname: str | None = None, active: bool = True) -> dict:
    return {
        "id": price_id,
        "object": "price",
        "product": product,
        "unit_amount": unit_amount,
        "currency": currency,
        "recurring": recurring,
        "nickname": nickname,
        "active": active,
        "created": 1700000100,
    }


class EventCollector:
    """Subscribes to a topic and keeps decoded envelopes."""

    def __init__(self, bus: EventBus, topic: str):
        self.events: list[dict] = []
        self._lock = threading.Lock()
        bus.subscribe(topic, self._handle)

    def _handle(self, data: bytes):
        with self._lock:
            self.events.append(json.loads(data))

    @property
    def payloads(self) -> list[dict]:
        with self._lock:
            return [e["payload"] for e in self.events]

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if len(self.events) >= count:
                    return True
            time.sleep(0.01)
        return False



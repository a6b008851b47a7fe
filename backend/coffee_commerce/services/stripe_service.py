"""
Stripe implementation of the provider client.

With no secret key configured the disabled client is used instead: it never
calls Stripe and hands out synthetic ``prod_stub_``/``price_stub_`` ids that
cannot collide with real Stripe ids.
"""
import logging
import uuid
from typing import Optional

import stripe

from coffee_commerce.config import Settings, get_settings
from coffee_commerce.services.provider import (
    ProviderClient,
    ProviderError,
    ProviderNotFoundError,
    ProviderPrice,
    ProviderProduct,
    ProviderRecurring,
)

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100
STUB_NAMESPACE = uuid.UUID("6f1c9a52-3a7e-4c55-9a59-6c0ffee00001")


def _wrap_stripe_error(e: stripe.StripeError, what: str) -> ProviderError:
    if isinstance(e, stripe.InvalidRequestError) and getattr(e, "code", None) == "resource_missing":
        return ProviderNotFoundError(f"{what} not found in Stripe")
    return ProviderError(f"Stripe error while {what}: {e.user_message or e}")


class StripeProviderClient(ProviderClient):
    """Talks to the Stripe API with the configured secret key."""

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("Stripe is not configured")
        self.api_key = api_key

    def get_product(self, provider_id: str) -> ProviderProduct:
        if not provider_id:
            raise ProviderNotFoundError("empty provider id")
        try:
            product = stripe.Product.retrieve(provider_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise _wrap_stripe_error(e, f"retrieving product {provider_id}") from e
        return ProviderProduct.from_dict(product)

    def create_product(self, name, description="", images=None, metadata=None) -> ProviderProduct:
        params = {"name": name, "metadata": metadata or {}}
        if description:
            params["description"] = description
        if images:
            params["images"] = images
        try:
            product = stripe.Product.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _wrap_stripe_error(e, f"creating product {name!r}") from e
        logger.info(f"Created Stripe product {product.id} for {name!r}")
        return ProviderProduct.from_dict(product)

    def create_price(
        self,
        provider_product_id,
        amount,
        currency,
        recurring=False,
        interval=None,
        interval_count=None,
        nickname=None,
    ) -> ProviderPrice:
        params = {
            "product": provider_product_id,
            "unit_amount": amount,
            "currency": currency.lower(),
        }
        if recurring:
            params["recurring"] = {"interval": interval, "interval_count": interval_count or 1}
        if nickname:
            params["nickname"] = nickname
        try:
            price = stripe.Price.create(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            raise _wrap_stripe_error(e, f"creating price for {provider_product_id}") from e
        logger.info(f"Created Stripe price {price.id} for product {provider_product_id}")
        return ProviderPrice.from_dict(price)

    def list_all_products(self) -> list[ProviderProduct]:
        try:
            page = stripe.Product.list(limit=LIST_PAGE_SIZE, api_key=self.api_key)
            return [ProviderProduct.from_dict(p) for p in page.auto_paging_iter()]
        except stripe.StripeError as e:
            raise _wrap_stripe_error(e, "listing products") from e


class DisabledProviderClient(ProviderClient):
    """Development stand-in used when no Stripe key is configured."""

    enabled = False

    def __init__(self):
        self._products: dict[str, ProviderProduct] = {}
        self._prices: dict[str, ProviderPrice] = {}

    @staticmethod
    def _stub_id(prefix: str, *parts) -> str:
        seed = "|".join(str(p) for p in parts)
        return f"{prefix}_stub_{uuid.uuid5(STUB_NAMESPACE, seed).hex}"

    def get_product(self, provider_id: str) -> ProviderProduct:
        try:
            return self._products[provider_id]
        except KeyError:
            raise ProviderNotFoundError(f"product {provider_id} not found (provider disabled)") from None

    def create_product(self, name, description="", images=None, metadata=None) -> ProviderProduct:
        metadata = dict(metadata or {})
        product_id = self._stub_id("prod", name, sorted(metadata.items()))
        product = ProviderProduct(
            id=product_id,
            name=name,
            description=description or "",
            images=list(images or []),
            metadata=metadata,
        )
        self._products[product_id] = product
        logger.debug(f"Stripe disabled, stubbed product {product_id} for {name!r}")
        return product

    def create_price(
        self,
        provider_product_id,
        amount,
        currency,
        recurring=False,
        interval=None,
        interval_count=None,
        nickname=None,
    ) -> ProviderPrice:
        price_id = self._stub_id(
            "price", provider_product_id, amount, currency.upper(), interval, interval_count, nickname
        )
        price = ProviderPrice(
            id=price_id,
            product=provider_product_id,
            unit_amount=amount,
            currency=currency.upper(),
            nickname=nickname,
            recurring=ProviderRecurring(interval, interval_count or 1) if recurring else None,
        )
        self._prices[price_id] = price
        return price

    def list_all_products(self) -> list[ProviderProduct]:
        return list(self._products.values())


def get_provider_client(settings: Optional[Settings] = None) -> ProviderClient:
    settings = settings or get_settings()
    if settings.stripe_secret_key:
        return StripeProviderClient(settings.stripe_secret_key)
    logger.warning("STRIPE_SECRET_KEY not set, provider client running in disabled mode")
    return DisabledProviderClient()

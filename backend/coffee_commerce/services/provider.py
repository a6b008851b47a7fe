"""
Provider Client

The capability set the sync engine needs from the external payment-and-catalog
provider. Implementations live in stripe_service (live and disabled mode);
tests supply their own in-memory client.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


class ProviderError(Exception):
    """A provider call failed."""


class ProviderNotFoundError(ProviderError):
    """The provider has no object with the requested id."""


def to_plain_dict(obj: Any) -> dict:
    """Turn a Stripe object (or an already-decoded dict) into plain dicts and lists."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    # StripeObject renders itself as JSON
    return json.loads(str(obj))


@dataclass
class ProviderProduct:
    """Provider-side product record. In this catalog it represents one variant SKU."""
    id: str
    name: str
    description: str = ""
    active: bool = True
    images: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    created: Optional[int] = None  # unix seconds

    @classmethod
    def from_dict(cls, data: Any) -> "ProviderProduct":
        data = to_plain_dict(data)
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            description=data.get("description") or "",
            active=bool(data.get("active", True)),
            images=list(data.get("images") or []),
            metadata={str(k): "" if v is None else str(v) for k, v in (data.get("metadata") or {}).items()},
            created=data.get("created"),
        )


@dataclass
class ProviderRecurring:
    interval: str
    interval_count: int = 1


@dataclass
class ProviderPrice:
    id: str
    product: str  # provider product id
    unit_amount: int
    currency: str
    active: bool = True
    nickname: Optional[str] = None
    recurring: Optional[ProviderRecurring] = None
    created: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ProviderPrice":
        data = to_plain_dict(data)
        product = data.get("product")
        if isinstance(product, dict):
            product = product.get("id")
        recurring = data.get("recurring")
        if recurring:
            # Only an absent count defaults to 1; 0 or null must reach validation as-is
            count = recurring.get("interval_count", 1)
            recurring = ProviderRecurring(
                interval=recurring.get("interval"),
                interval_count=int(count) if count is not None else 0,
            )
        return cls(
            id=data.get("id") or "",
            product=product or "",
            unit_amount=int(data.get("unit_amount") or 0),
            currency=(data.get("currency") or "usd").upper(),
            active=bool(data.get("active", True)),
            nickname=data.get("nickname") or None,
            recurring=recurring or None,
            created=data.get("created"),
        )


class ProviderClient(ABC):
    """Synchronous, fallible access to provider products and prices."""

    enabled: bool = True

    @abstractmethod
    def get_product(self, provider_id: str) -> ProviderProduct:
        """Raise ProviderNotFoundError when the id is unknown."""

    @abstractmethod
    def create_product(
        self,
        name: str,
        description: str = "",
        images: Optional[list[str]] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> ProviderProduct:
        pass

    @abstractmethod
    def create_price(
        self,
        provider_product_id: str,
        amount: int,
        currency: str,
        recurring: bool = False,
        interval: Optional[str] = None,
        interval_count: Optional[int] = None,
        nickname: Optional[str] = None,
    ) -> ProviderPrice:
        pass

    @abstractmethod
    def list_all_products(self) -> list[ProviderProduct]:
        """Every provider product, active or not, across all pages."""

    def find_product_by_name(
        self, name: str, candidates: Optional[list[ProviderProduct]] = None
    ) -> Optional[ProviderProduct]:
        """Case-insensitive exact name match. Searches `candidates` instead of listing when given."""
        wanted = name.strip().casefold()
        for product in candidates if candidates is not None else self.list_all_products():
            if product.name.strip().casefold() == wanted:
                return product
        return None

    def find_product_by_metadata(
        self, key: str, value: str, candidates: Optional[list[ProviderProduct]] = None
    ) -> Optional[ProviderProduct]:
        for product in candidates if candidates is not None else self.list_all_products():
            if product.metadata.get(key) == value:
                return product
        return None

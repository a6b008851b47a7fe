import re
import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from coffee_commerce.models.price import PriceType, RECURRING_INTERVALS

MAX_PRICE_AMOUNT = 99_999_999
MAX_INTERVAL_COUNT = 12

_CURRENCY = re.compile(r"^[A-Z]{3}$")


class PriceCreate(BaseModel):
    product_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    amount: int = Field(gt=0, le=MAX_PRICE_AMOUNT)  # minor units
    currency: str = "USD"
    type: PriceType = PriceType.ONE_TIME
    interval: str | None = None
    interval_count: int | None = None
    active: bool = True

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        v = (v or "USD").strip().upper()
        if not _CURRENCY.match(v):
            raise ValueError("currency must be a 3-letter ISO-4217 code")
        return v

    @model_validator(mode="after")
    def recurring_fields(self):
        if self.type == PriceType.RECURRING:
            if self.interval not in RECURRING_INTERVALS:
                raise ValueError(f"interval must be one of {', '.join(RECURRING_INTERVALS)} for recurring prices")
            if self.interval_count is None or not 1 <= self.interval_count <= MAX_INTERVAL_COUNT:
                raise ValueError(f"interval_count must be between 1 and {MAX_INTERVAL_COUNT} for recurring prices")
        elif self.interval is not None or self.interval_count is not None:
            raise ValueError("one-time prices cannot have interval or interval_count")
        return self


class PriceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    active: bool | None = None


class Price(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    name: str
    amount: int
    currency: str
    type: PriceType
    interval: str | None = None
    interval_count: int | None = None
    active: bool
    provider_id: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

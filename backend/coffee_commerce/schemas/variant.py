import uuid
from datetime import datetime

from pydantic import BaseModel


class Variant(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    price_id: uuid.UUID | None = None
    provider_product_id: str | None = None
    provider_price_id: str | None = None
    active: bool
    stock_level: int
    weight_grams: int
    options: dict[str, str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AssignPriceRequest(BaseModel):
    price_id: uuid.UUID

import uuid
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ProductBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    image_url: str | None = None
    origin: str | None = None
    roast_level: str | None = None
    flavor_notes: str | None = None
    allow_subscription: bool = False
    stock_level: int = Field(default=0, ge=0)
    base_weight_grams: int = Field(default=340, gt=0)
    options: dict[str, list[str]] = {}


class ProductCreate(ProductBase):
    active: bool = True

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("options")
    @classmethod
    def options_well_formed(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for key, values in v.items():
            if not key.strip():
                raise ValueError("option keys must not be blank")
            if len(set(values)) != len(values):
                raise ValueError(f"option {key} has duplicate values")
        return v


class Product(ProductBase):
    id: uuid.UUID
    provider_id: str
    active: bool
    archived: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProductList(BaseModel):
    items: list[Product]
    total: int
    offset: int
    limit: int

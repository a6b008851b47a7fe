import uuid

from sqlalchemy import Column, String, Text, Boolean, Integer, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship
from coffee_commerce.database import Base, utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id = Column(String(255), nullable=False, default="", index=True)  # Stripe prod_xxx, empty while bootstrapping
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, default="")
    image_url = Column(String(500))
    origin = Column(String(255))
    roast_level = Column(String(50))
    flavor_notes = Column(Text)
    active = Column(Boolean, default=True, nullable=False, index=True)
    archived = Column(Boolean, default=False, nullable=False, index=True)
    allow_subscription = Column(Boolean, default=False, nullable=False)
    stock_level = Column(Integer, default=0, nullable=False)
    base_weight_grams = Column(Integer, default=340, nullable=False)
    # option key -> ordered allowed values, e.g. {"weight": ["12oz", "3lb"]}
    options = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    variants = relationship("Variant", back_populates="product", cascade="all, delete-orphan", passive_deletes=True)
    prices = relationship("Price", back_populates="product", cascade="all, delete-orphan", passive_deletes=True)

    def allows_option(self, key: str, value: str) -> bool:
        return value in (self.options or {}).get(key, [])

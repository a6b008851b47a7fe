import json
import uuid

from sqlalchemy import Column, String, Boolean, Integer, DateTime, ForeignKey, JSON, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship, validates
from coffee_commerce.database import Base, utcnow


def options_key(options: dict | None) -> str:
    """Canonical form of an options mapping, used for per-product uniqueness."""
    return json.dumps(options or {}, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class Variant(Base):
    __tablename__ = "variants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    price_id = Column(Uuid, ForeignKey("prices.id"), nullable=True, index=True)
    provider_product_id = Column(String(255), unique=True)  # Stripe prod_xxx, NULL until bound
    provider_price_id = Column(String(255))
    active = Column(Boolean, default=True, nullable=False)
    stock_level = Column(Integer, default=0, nullable=False)
    weight_grams = Column(Integer, default=340, nullable=False)
    options = Column(JSON, default=dict, nullable=False)
    options_key = Column(String(1000), nullable=False, default="{}")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("product_id", "options_key", name="uq_variants_product_options"),
    )

    # Relationships
    product = relationship("Product", back_populates="variants")
    price = relationship("Price", back_populates="variants")
    sync_hashes = relationship("SyncHash", back_populates="variant", cascade="all, delete-orphan", passive_deletes=True)

    @validates("options")
    def _sync_options_key(self, key, value):
        value = dict(value or {})
        self.options_key = options_key(value)
        return value

import enum
import uuid

from sqlalchemy import Column, String, Boolean, Integer, DateTime, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
from coffee_commerce.database import Base, utcnow


class PriceType(str, enum.Enum):
    ONE_TIME = "one_time"
    RECURRING = "recurring"


RECURRING_INTERVALS = ("week", "month", "year")


class Price(Base):
    __tablename__ = "prices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id = Column(Uuid, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String(3), nullable=False, default="USD")
    type = Column(
        Enum(PriceType, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=PriceType.ONE_TIME,
    )
    interval = Column(String(10))  # week / month / year, recurring only
    interval_count = Column(Integer)
    active = Column(Boolean, default=True, nullable=False)
    provider_id = Column(String(255), unique=True)  # Stripe price_xxx, temp_xxx for placeholders
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    product = relationship("Product", back_populates="prices")
    variants = relationship("Variant", back_populates="price")

    @property
    def is_recurring(self) -> bool:
        return self.type == PriceType.RECURRING

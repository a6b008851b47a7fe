import enum
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, Uuid, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from coffee_commerce.database import Base, utcnow


class SyncSource(str, enum.Enum):
    PROVIDER_WEBHOOK = "provider_webhook"
    LOCAL_API = "local_api"
    RECONCILER = "reconciler"


def _sync_source_type():
    return Enum(SyncSource, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e])


class SyncHash(Base):
    """Content hash of the last payload applied to a variant for one provider product."""
    __tablename__ = "sync_hashes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    variant_id = Column(Uuid, ForeignKey("variants.id", ondelete="CASCADE"), nullable=False)
    provider_product_id = Column(String(255), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False)
    algorithm = Column(String(20), nullable=False, default="sha256")
    sync_source = Column(_sync_source_type(), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("variant_id", "provider_product_id", name="uq_sync_hashes_variant_provider"),
    )

    # Relationships
    variant = relationship("Variant", back_populates="sync_hashes")


class SyncHashHistory(Base):
    """Append-only audit trail of every accepted sync hash."""
    __tablename__ = "sync_hash_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    variant_id = Column(Uuid, ForeignKey("variants.id", ondelete="CASCADE"), nullable=False)
    provider_product_id = Column(String(255), nullable=False)
    content_hash = Column(String(64), nullable=False)
    algorithm = Column(String(20), nullable=False, default="sha256")
    sync_source = Column(_sync_source_type(), nullable=False)
    recorded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_sync_hash_history_variant_recorded", "variant_id", "recorded_at"),
    )

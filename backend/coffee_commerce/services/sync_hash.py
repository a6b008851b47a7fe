"""
Sync Hash Service

Content hashing and the per-(variant, provider product) hash store that acts
as the idempotency oracle for webhook ingestion.

Hashes are SHA-256 over canonical JSON: keys sorted, no insignificant
whitespace, UTF-8.
"""
import hashlib
import json
import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coffee_commerce.database import utcnow
from coffee_commerce.models import SyncHash, SyncHashHistory, SyncSource, Variant
from coffee_commerce.services.provider import ProviderProduct

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "sha256"
RESERVED_METADATA_KEYS = frozenset({"sync_hash", "last_sync", "sync_source"})
DEFAULT_HISTORY_LIMIT = 10


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(data: Any) -> str:
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()


def provider_product_projection(product: ProviderProduct) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "description": product.description or "",
        "active": bool(product.active),
        "images": sorted(product.images or []),
        "metadata": {
            k: v for k, v in (product.metadata or {}).items()
            if k not in RESERVED_METADATA_KEYS
        },
    }


def compute_provider_product_hash(product: ProviderProduct) -> str:
    return content_hash(provider_product_projection(product))


def compute_variant_hash(variant: Variant) -> str:
    return content_hash({
        "provider_product_id": variant.provider_product_id or "",
        "provider_price_id": variant.provider_price_id or "",
        "weight_grams": variant.weight_grams,
        "options": dict(variant.options or {}),
        "active": bool(variant.active),
        "stock_level": variant.stock_level,
    })


class SyncHashStore:
    """Upsertable record of the last applied content hash per (variant, provider product)."""

    def __init__(self, db: Session):
        self.db = db

    def get_latest(self, variant_id: uuid.UUID, provider_product_id: str) -> Optional[SyncHash]:
        return (
            self.db.query(SyncHash)
            .filter(
                SyncHash.variant_id == variant_id,
                SyncHash.provider_product_id == provider_product_id,
            )
            .order_by(SyncHash.updated_at.desc())
            .first()
        )

    def get_latest_by_variant(self, variant_id: uuid.UUID) -> Optional[SyncHash]:
        return (
            self.db.query(SyncHash)
            .filter(SyncHash.variant_id == variant_id)
            .order_by(SyncHash.updated_at.desc())
            .first()
        )

    def get_latest_by_provider(self, provider_product_id: str) -> Optional[SyncHash]:
        return (
            self.db.query(SyncHash)
            .filter(SyncHash.provider_product_id == provider_product_id)
            .order_by(SyncHash.updated_at.desc())
            .first()
        )

    def matches(self, variant_id: uuid.UUID, provider_product_id: str, hash_value: str) -> bool:
        record = self.get_latest(variant_id, provider_product_id)
        return record is not None and record.content_hash == hash_value

    def _write(self, variant_id, provider_product_id, hash_value, sync_source, algorithm) -> SyncHash:
        record = self.get_latest(variant_id, provider_product_id)
        if record is None:
            record = SyncHash(
                variant_id=variant_id,
                provider_product_id=provider_product_id,
                content_hash=hash_value,
                algorithm=algorithm,
                sync_source=sync_source,
            )
            self.db.add(record)
        else:
            record.content_hash = hash_value
            record.algorithm = algorithm
            record.sync_source = sync_source
            record.updated_at = utcnow()
        self.db.add(SyncHashHistory(
            variant_id=variant_id,
            provider_product_id=provider_product_id,
            content_hash=hash_value,
            algorithm=algorithm,
            sync_source=sync_source,
        ))
        self.db.commit()
        return record

    def upsert(
        self,
        variant_id: uuid.UUID,
        provider_product_id: str,
        hash_value: str,
        sync_source: SyncSource,
        algorithm: str = HASH_ALGORITHM,
    ) -> SyncHash:
        """Insert or replace the hash for the pair and append it to history."""
        try:
            return self._write(variant_id, provider_product_id, hash_value, sync_source, algorithm)
        except IntegrityError:
            # Another writer inserted the pair between our read and commit.
            self.db.rollback()
            logger.info(f"Sync hash insert raced for variant {variant_id}/{provider_product_id}, retrying as update")
            return self._write(variant_id, provider_product_id, hash_value, sync_source, algorithm)

    def delete_by_variant(self, variant_id: uuid.UUID) -> int:
        deleted = (
            self.db.query(SyncHash)
            .filter(SyncHash.variant_id == variant_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def history(self, variant_id: uuid.UUID, limit: int = DEFAULT_HISTORY_LIMIT) -> list[SyncHashHistory]:
        return (
            self.db.query(SyncHashHistory)
            .filter(SyncHashHistory.variant_id == variant_id)
            .order_by(SyncHashHistory.recorded_at.desc())
            .limit(limit)
            .all()
        )

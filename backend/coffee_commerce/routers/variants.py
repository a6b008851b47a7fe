import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from coffee_commerce.database import get_db
from coffee_commerce.dependencies import get_event_bus
from coffee_commerce.errors import VariantNotFoundError
from coffee_commerce.events import EventBus
from coffee_commerce.models import Variant as VariantModel
from coffee_commerce.schemas import AssignPriceRequest, Variant
from coffee_commerce.services import price_service
from coffee_commerce.services.sync_hash import DEFAULT_HISTORY_LIMIT, SyncHashStore

router = APIRouter(prefix="/variants", tags=["variants"])


@router.get("/{variant_id}", response_model=Variant)
def get_variant(variant_id: uuid.UUID, db: Session = Depends(get_db)):
    variant = db.query(VariantModel).filter(VariantModel.id == variant_id).first()
    if not variant:
        raise VariantNotFoundError(f"Variant {variant_id} not found")
    return variant


@router.post("/{variant_id}/assign-price", response_model=Variant)
def assign_price(
    variant_id: uuid.UUID,
    data: AssignPriceRequest,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return price_service.assign_price_to_variant(db, bus, variant_id, data.price_id)


@router.get("/{variant_id}/sync-history")
def sync_history(
    variant_id: uuid.UUID,
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Recent sync hashes accepted for this variant, newest first."""
    get_variant(variant_id, db)
    return [
        {
            "provider_product_id": h.provider_product_id,
            "content_hash": h.content_hash,
            "algorithm": h.algorithm,
            "sync_source": h.sync_source.value,
            "recorded_at": h.recorded_at.isoformat(),
        }
        for h in SyncHashStore(db).history(variant_id, limit=limit)
    ]

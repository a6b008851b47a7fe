import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from coffee_commerce.database import get_db
from coffee_commerce.dependencies import get_event_bus, get_provider
from coffee_commerce.events import EventBus
from coffee_commerce.schemas import Price, PriceCreate, PriceUpdate, Variant
from coffee_commerce.services import price_service
from coffee_commerce.services.provider import ProviderClient

router = APIRouter(prefix="/prices", tags=["prices"])


@router.post("", response_model=Price, status_code=201)
def create_price(
    data: PriceCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
    provider: ProviderClient = Depends(get_provider),
):
    return price_service.create_price(db, bus, provider, data)


@router.get("", response_model=list[Price])
def list_prices(
    product_id: Optional[uuid.UUID] = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
):
    return price_service.list_prices(db, product_id=product_id, active_only=active_only)


@router.get("/{price_id}", response_model=Price)
def get_price(price_id: uuid.UUID, db: Session = Depends(get_db)):
    return price_service.get_price(db, price_id)


@router.put("/{price_id}", response_model=Price)
def update_price(
    price_id: uuid.UUID,
    data: PriceUpdate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return price_service.update_price(db, bus, price_id, data)


@router.delete("/{price_id}", status_code=204)
def delete_price(
    price_id: uuid.UUID,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    price_service.delete_price(db, bus, price_id)
    return Response(status_code=204)


@router.get("/{price_id}/variants", response_model=list[Variant])
def list_price_variants(price_id: uuid.UUID, db: Session = Depends(get_db)):
    return price_service.variants_for_price(db, price_id)

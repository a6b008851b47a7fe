import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from coffee_commerce.database import get_db
from coffee_commerce.dependencies import get_event_bus, get_provider
from coffee_commerce.events import EventBus
from coffee_commerce.schemas import Price, Product, ProductCreate, ProductList, Variant
from coffee_commerce.services import product_service
from coffee_commerce.services.provider import ProviderClient

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=ProductList)
def list_products(
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=product_service.MAX_PAGE_SIZE),
    include_inactive: bool = False,
    include_archived: bool = False,
    db: Session = Depends(get_db),
):
    items, total = product_service.list_products(
        db, offset=offset, limit=limit,
        include_inactive=include_inactive, include_archived=include_archived,
    )
    return {"items": items, "total": total, "offset": offset, "limit": limit}


@router.post("", response_model=Product, status_code=201)
def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
    provider: ProviderClient = Depends(get_provider),
):
    """Create a product; its variants are generated asynchronously from the option matrix."""
    return product_service.create_product(db, bus, provider, data)


@router.get("/{product_id}", response_model=Product)
def get_product(product_id: uuid.UUID, db: Session = Depends(get_db)):
    return product_service.get_product(db, product_id)


@router.delete("/{product_id}", status_code=204)
def delete_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    product_service.delete_product(db, bus, product_id)
    return Response(status_code=204)


@router.post("/{product_id}/archive", response_model=Product)
def archive_product(
    product_id: uuid.UUID,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return product_service.archive_product(db, bus, product_id)


@router.get("/{product_id}/variants", response_model=list[Variant])
def list_product_variants(product_id: uuid.UUID, db: Session = Depends(get_db)):
    return product_service.list_variants(db, product_id)


@router.get("/{product_id}/prices", response_model=list[Price])
def list_product_prices(product_id: uuid.UUID, db: Session = Depends(get_db)):
    return product_service.list_prices(db, product_id)

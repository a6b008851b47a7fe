"""Admin endpoints: health and Stripe id reconciliation."""
import hmac
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_commerce.config import Settings, get_settings
from coffee_commerce.database import get_db
from coffee_commerce.dependencies import get_provider
from coffee_commerce.errors import PermissionDeniedError, SyncFailedError
from coffee_commerce.models import Product
from coffee_commerce.schemas import HealthStatus, SyncReport
from coffee_commerce.services.provider import ProviderClient
from coffee_commerce.services.reconciler import Reconciler
from coffee_commerce.tasks.scheduler import get_last_reconciliation, get_scheduler_status, record_reconciliation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def require_admin_key(
    x_admin_key: str | None = Header(None, description="Admin API key"),
    settings: Settings = Depends(get_settings),
):
    admin_key = settings.admin_api_key
    if admin_key and not hmac.compare_digest(x_admin_key or "", admin_key):
        raise PermissionDeniedError("Invalid admin key")


@router.get("/health", response_model=HealthStatus)
def health(db: Session = Depends(get_db), provider: ProviderClient = Depends(get_provider)):
    provider_mode = "enabled" if provider.enabled else "disabled"
    try:
        total = db.query(Product).count()
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        unhealthy = HealthStatus(
            status="unhealthy", total_products=0, database="disconnected", provider=provider_mode,
        )
        return JSONResponse(status_code=503, content=unhealthy.model_dump())
    return HealthStatus(
        status="healthy",
        total_products=total,
        database="connected",
        provider=provider_mode,
        last_reconciliation=get_last_reconciliation(),
    )


@router.post("/sync-stripe-ids", response_model=SyncReport, dependencies=[Depends(require_admin_key)])
def sync_stripe_ids(
    db: Session = Depends(get_db),
    provider: ProviderClient = Depends(get_provider),
    settings: Settings = Depends(get_settings),
):
    """Re-discover every product's Stripe id and repair stale ones."""
    started_at = datetime.now()
    try:
        report = Reconciler(db, provider, page_size=settings.reconcile_page_size).sync_provider_ids()
    except SQLAlchemyError as e:
        db.rollback()
        raise SyncFailedError(f"Stripe id sync failed: {e}") from e
    record_reconciliation(report, started_at, trigger="manual")
    return report


@router.get("/scheduler", dependencies=[Depends(require_admin_key)])
def scheduler_status():
    return get_scheduler_status()

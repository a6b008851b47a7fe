import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from coffee_commerce.config import get_settings
from coffee_commerce.database import SessionLocal, init_db
from coffee_commerce.error_handlers import register_exception_handlers
from coffee_commerce.events import EventBus
from coffee_commerce.metrics import http_metrics
from coffee_commerce.routers.admin import router as admin_router
from coffee_commerce.routers.prices import router as prices_router
from coffee_commerce.routers.products import router as products_router
from coffee_commerce.routers.variants import router as variants_router
from coffee_commerce.routers.webhooks import router as webhooks_router
from coffee_commerce.services.stripe_service import get_provider_client
from coffee_commerce.services.variant_service import VariantGenerator
from coffee_commerce.tasks.scheduler import start_scheduler, stop_scheduler

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, event bus, provider client and scheduler on startup."""
    logger.info("Starting up... Initializing database")
    init_db()
    logger.info("Connecting event bus...")
    bus = EventBus.from_settings(settings)
    provider = get_provider_client(settings)
    app.state.event_bus = bus
    app.state.provider = provider
    VariantGenerator(SessionLocal, bus, provider).register()
    start_scheduler(provider)
    yield
    logger.info("Shutting down...")
    stop_scheduler()
    bus.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Coffee Commerce API",
        description="Coffee catalog with bidirectional Stripe sync",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.middleware("http")
    async def record_request_duration(request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            route = request.scope.get("route")
            http_metrics.request_duration.labels(
                method=request.method,
                route=getattr(route, "path", "unmatched"),
                status=str(status),
            ).observe(time.perf_counter() - start)

    app.include_router(products_router, prefix=settings.api_prefix)
    app.include_router(prices_router, prefix=settings.api_prefix)
    app.include_router(variants_router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)
    app.include_router(webhooks_router, prefix=settings.api_prefix)

    app.mount(settings.metrics_path, make_asgi_app())

    @app.get("/")
    def root():
        return {"status": "ok", "service": settings.service_name}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("coffee_commerce.main:app", host="0.0.0.0", port=settings.port)

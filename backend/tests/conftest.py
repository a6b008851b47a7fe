"""
Pytest fixtures for the coffee commerce backend tests.

Provides an in-memory database, an event bus on a private metrics registry,
an in-memory Stripe stand-in, and a test client wired to all three.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ADMIN_API_KEY"] = ""
os.environ["RECONCILE_SCHEDULE_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coffee_commerce.database import Base, get_db
from coffee_commerce.events import EventBus
from coffee_commerce.metrics import EventMetrics, ReconcileMetrics, WebhookMetrics
from coffee_commerce.models import Price, PriceType, Product, Variant
from tests.helpers import FakeProvider


@pytest.fixture(scope='function')
def engine():
    """Fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope='function')
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope='function')
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def event_metrics():
    return EventMetrics(CollectorRegistry())


@pytest.fixture(scope='function')
def webhook_metrics():
    return WebhookMetrics(CollectorRegistry())


@pytest.fixture(scope='function')
def reconcile_metrics():
    return ReconcileMetrics(CollectorRegistry())


@pytest.fixture(scope='function')
def bus(event_metrics):
    bus = EventBus(service_name="test", metrics=event_metrics)
    yield bus
    bus.close()


@pytest.fixture(scope='function')
def provider():
    return FakeProvider()


@pytest.fixture(scope='function')
def make_product(db):
    """Create a local product."""
    def _make(name="Ethiopia Yirgacheffe", options=None, provider_id="", **fields):
        product = Product(
            name=name,
            provider_id=provider_id,
            options=options if options is not None else {"weight": ["12oz", "3lb"], "grind": ["whole_bean", "espresso"]},
            **fields,
        )
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_variant(db):
    """Create a variant with its own one-time price."""
    def _make(product, provider_product_id="prod_A", options=None, **fields):
        price = Price(
            product_id=product.id,
            name=f"{product.name} - Default Price",
            amount=1000,
            currency="USD",
            type=PriceType.ONE_TIME,
            provider_id=f"price_for_{provider_product_id}",
        )
        db.add(price)
        db.flush()
        variant = Variant(
            product_id=product.id,
            price_id=price.id,
            provider_product_id=provider_product_id,
            provider_price_id=price.provider_id,
            options=options if options is not None else {"weight": "12oz"},
            weight_grams=fields.pop("weight_grams", 336),
            **fields,
        )
        db.add(variant)
        db.commit()
        return variant
    return _make


@pytest.fixture(scope='function')
def app(session_factory, bus, provider):
    """Application wired to the test database, bus and provider. Lifespan is not run."""
    from coffee_commerce.main import create_app

    app = create_app()
    app.state.event_bus = bus
    app.state.provider = provider

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return TestClient(app)

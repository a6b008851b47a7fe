"""Request dependencies for collaborators created in the app lifespan."""
from fastapi import Request

from coffee_commerce.events import EventBus
from coffee_commerce.services.provider import ProviderClient


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_provider(request: Request) -> ProviderClient:
    return request.app.state.provider

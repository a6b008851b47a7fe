from coffee_commerce.events.bus import (
    EventBus,
    EventBusError,
    EventPublishError,
    Subscription,
    decode_envelope,
)

__all__ = ["EventBus", "EventBusError", "EventPublishError", "Subscription", "decode_envelope"]

"""
Event Bus

Process-wide publish/subscribe for catalog events. Every message is wrapped in
an envelope ``{id, topic, timestamp, payload}`` and serialized as JSON; handlers
receive the raw bytes.

Each subscription owns a queue and a worker thread, so one subscription sees
its messages serially and in publish order while different subscriptions run
in parallel. ``publish_persistent`` additionally appends the message to a Redis
stream (subject ``events.<topic>``) trimmed to the retention window.
"""
import json
import logging
import queue
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError

from coffee_commerce.config import get_settings
from coffee_commerce.metrics import EventMetrics, event_metrics

logger = logging.getLogger(__name__)

Handler = Callable[[bytes], None]

SUBJECT_PREFIX = "events."
DEFAULT_RETENTION = timedelta(days=30)

_STOP = object()


class EventBusError(Exception):
    pass


class EventPublishError(EventBusError):
    pass


def encode_envelope(topic: str, payload: Any) -> tuple[str, bytes]:
    event_id = str(uuid.uuid4())
    envelope = {
        "id": event_id,
        "topic": topic,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    return event_id, json.dumps(envelope, default=str).encode("utf-8")


def decode_envelope(data: bytes) -> dict:
    return json.loads(data)


class Subscription:
    """Handle returned by EventBus.subscribe."""

    def __init__(self, bus: "EventBus", topic: str, handler: Handler):
        self.bus = bus
        self.topic = topic
        self.handler = handler
        self._queue: queue.Queue = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(
            target=self._run, name=f"event-sub-{topic}", daemon=True
        )
        self._thread.start()

    def _deliver(self, data: bytes):
        self._queue.put(data)

    def _run(self):
        metrics = self.bus.metrics
        service = self.bus.service_name
        while True:
            data = self._queue.get()
            if data is _STOP:
                break
            metrics.received.labels(topic=self.topic, service=service).inc()
            start = time.perf_counter()
            try:
                self.handler(data)
            except Exception as e:
                metrics.errors.labels(topic=self.topic, service=service, error_kind="handler_error").inc()
                logger.error(f"Event handler for {self.topic} failed: {e}", exc_info=True)
            finally:
                metrics.process_time.labels(topic=self.topic, service=service).observe(
                    time.perf_counter() - start
                )

    def unsubscribe(self):
        """Stop the worker once queued messages have been handled."""
        if self._closed:
            return
        self._closed = True
        self.bus._remove(self)
        self._queue.put(_STOP)
        if threading.current_thread() is not self._thread:
            self._thread.join()


class EventBus:
    def __init__(
        self,
        service_name: str = "coffee-commerce",
        redis_client: Optional[redis.Redis] = None,
        stream_name: str = "events",
        retention: timedelta = DEFAULT_RETENTION,
        metrics: Optional[EventMetrics] = None,
    ):
        self.service_name = service_name
        self.stream_name = stream_name
        self.retention = retention
        self.metrics = metrics or event_metrics
        self._redis = redis_client
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._lock = threading.Lock()
        self._closing = False
        self._closed = False
        self._drained = threading.Event()
        self._draining: list[Subscription] = []

    @classmethod
    def from_settings(cls, settings=None) -> "EventBus":
        """Build the bus, falling back to in-process delivery when Redis is unreachable."""
        settings = settings or get_settings()
        client = None
        try:
            client = redis.Redis.from_url(settings.redis_url)
            client.ping()
            logger.info("Event stream connected to Redis")
        except RedisError as e:
            logger.warning(f"Redis not available, persistent events delivered in-process only: {e}")
            client = None
        return cls(
            service_name=settings.service_name,
            redis_client=client,
            stream_name=settings.event_stream_name,
            retention=timedelta(days=settings.event_retention_days),
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_stream(self) -> bool:
        return self._redis is not None

    def _error(self, topic: str, error_kind: str):
        self.metrics.errors.labels(topic=topic, service=self.service_name, error_kind=error_kind).inc()

    def _encode(self, topic: str, payload: Any) -> tuple[str, bytes]:
        try:
            return encode_envelope(topic, payload)
        except (TypeError, ValueError) as e:
            self._error(topic, "marshal_error")
            raise EventPublishError(f"Could not encode event for {topic}: {e}") from e

    def _fan_out(self, topic: str, data: bytes):
        with self._lock:
            subscribers = list(self._subscriptions.get(topic, ()))
        for subscription in subscribers:
            subscription._deliver(data)

    def publish(self, topic: str, payload: Any) -> Optional[str]:
        """Fire-and-forget fan-out to in-process subscribers. Returns the event id."""
        if self._closed:
            self._error(topic, "bus_closed")
            logger.warning(f"Dropping {topic} event, bus is closed")
            return None
        try:
            event_id, data = self._encode(topic, payload)
        except EventPublishError as e:
            logger.error(str(e))
            return None
        self._fan_out(topic, data)
        self.metrics.published.labels(topic=topic, service=self.service_name).inc()
        logger.debug(f"Published {topic} event {event_id}")
        return event_id

    def publish_persistent(self, topic: str, payload: Any) -> str:
        """Append to the durable stream, then fan out locally.

        Raises EventPublishError when the stream append fails; callers decide
        whether that is fatal.
        """
        if self._closed:
            self._error(topic, "bus_closed")
            raise EventPublishError(f"Cannot publish {topic}, bus is closed")
        event_id, data = self._encode(topic, payload)
        if self._redis is not None:
            min_id = int((time.time() - self.retention.total_seconds()) * 1000)
            try:
                self._redis.xadd(
                    self.stream_name,
                    {"subject": f"{SUBJECT_PREFIX}{topic}", "data": data},
                    minid=min_id,
                    approximate=True,
                )
            except RedisError as e:
                self._error(topic, "publish_persistent_error")
                raise EventPublishError(f"Failed to append {topic} to stream {self.stream_name}: {e}") from e
        self._fan_out(topic, data)
        self.metrics.published.labels(topic=topic, service=self.service_name).inc()
        logger.debug(f"Published persistent {topic} event {event_id}")
        return event_id

    def subscribe(self, topic: str, handler: Handler) -> Subscription:
        if self._closing:
            self._error(topic, "subscribe_error")
            raise EventBusError(f"Cannot subscribe to {topic}, bus is closed")
        subscription = Subscription(self, topic, handler)
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(subscription)
        self.metrics.subscribers.labels(topic=topic).inc()
        logger.info(f"Subscribed to {topic}")
        return subscription

    def _remove(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscriptions.get(subscription.topic, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
                self.metrics.subscribers.labels(topic=subscription.topic).dec()

    def close(self):
        """Drain every subscription and stop accepting messages.

        Safe to call repeatedly; later callers block until the first drain finishes.
        """
        with self._lock:
            first = not self._closing
            if first:
                self._closing = True
                self._draining = [s for subs in self._subscriptions.values() for s in subs]
        if not first:
            # A handler closing the bus cannot wait for its own subscription to drain
            if not any(threading.current_thread() is s._thread for s in self._draining):
                self._drained.wait()
            return
        # Handlers may still publish to subscriptions that have not drained yet
        for subscription in self._draining:
            subscription.unsubscribe()
        self._closed = True
        self._drained.set()
        if self._redis is not None:
            self._redis.close()
        logger.info("Event bus closed")

"""
Prometheus metrics.

Collectors are grouped per concern so tests can build them on a private
CollectorRegistry; the module-level instances use the default registry and
are what /metrics exposes.
"""
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, REGISTRY

NAMESPACE = "coffee_commerce"


class EventMetrics:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.published = Counter(
            "events_published_total", "Events published to the bus",
            ["topic", "service"], namespace=NAMESPACE, registry=registry,
        )
        self.received = Counter(
            "events_received_total", "Events delivered to subscribers",
            ["topic", "service"], namespace=NAMESPACE, registry=registry,
        )
        self.process_time = Histogram(
            "event_process_time_seconds", "Subscriber handler duration",
            ["topic", "service"], namespace=NAMESPACE, registry=registry,
        )
        self.errors = Counter(
            "events_error_total", "Event bus errors",
            ["topic", "service", "error_kind"], namespace=NAMESPACE, registry=registry,
        )
        self.subscribers = Gauge(
            "event_subscribers_active", "Active subscriptions per topic",
            ["topic"], namespace=NAMESPACE, registry=registry,
        )


class WebhookMetrics:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.received = Counter(
            "webhook_events_received_total", "Verified provider webhook events",
            ["event_type"], namespace=NAMESPACE, registry=registry,
        )
        self.skipped = Counter(
            "webhook_events_skipped_total", "Webhook events acknowledged without writes",
            ["event_type", "reason"], namespace=NAMESPACE, registry=registry,
        )
        self.failed = Counter(
            "webhook_events_failed_total", "Webhook events whose handler failed",
            ["event_type"], namespace=NAMESPACE, registry=registry,
        )


class ReconcileMetrics:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.results = Counter(
            "reconcile_results_total", "Reconciler per-product outcomes",
            ["status"], namespace=NAMESPACE, registry=registry,
        )


class HttpMetrics:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.request_duration = Histogram(
            "http_request_duration_seconds", "HTTP request duration",
            ["method", "route", "status"], registry=registry,
        )


event_metrics = EventMetrics()
webhook_metrics = WebhookMetrics()
reconcile_metrics = ReconcileMetrics()
http_metrics = HttpMetrics()

"""Prometheus metrics for monitoring"""
import time
from functools import wraps
from typing import Callable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

registry = CollectorRegistry()

request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

processor_requests = Counter(
    'payment_processor_requests_total',
    'Calls made to the payment processor',
    ['operation', 'outcome'],
    registry=registry
)

processor_duration = Histogram(
    'payment_processor_request_duration_seconds',
    'Payment processor call duration in seconds',
    ['operation'],
    registry=registry
)

quotations_created = Counter(
    'quotations_created_total',
    'Quotations written to the store',
    ['source'],
    registry=registry
)

settlements = Counter(
    'payment_settlements_total',
    'Local settlements of captured payments',
    ['outcome'],
    registry=registry
)

split_brain = Counter(
    'payment_split_brain_total',
    'Payments captured at the processor whose order could not be recorded',
    registry=registry
)

notifications_sent = Counter(
    'notifications_sent_total',
    'Notification delivery attempts',
    ['status'],
    registry=registry
)

redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    registry=registry
)

db_connected = Gauge(
    'db_connected',
    'Database connection status (1=connected, 0=disconnected)',
    registry=registry
)


def track_processor_call(operation: str):
    """Decorator to record processor call outcome and latency"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
                processor_requests.labels(operation=operation, outcome='success').inc()
                return result
            except Exception as e:
                processor_requests.labels(
                    operation=operation,
                    outcome=getattr(e, 'kind', 'error')
                ).inc()
                raise
            finally:
                processor_duration.labels(operation=operation).observe(time.time() - start_time)
        return wrapper
    return decorator


def get_metrics_text() -> str:
    """Generate Prometheus metrics in text format"""
    from prometheus_client import generate_latest
    return generate_latest(registry).decode('utf-8')

"""Metrics collection for converter-based applications.

Provides a thin convenience wrapper around ``prometheus_client`` so
converters and web endpoints record message and HTTP metrics consistently.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for testing)
- ``measure_time`` times any callable into the collector's operation histogram
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name of the embedding application
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        # Converter metrics
        self.converter_messages = Counter(
            'converter_messages_total',
            'Messages read or written by converters',
            ['direction', 'media_type', 'outcome'],
            registry=self.registry
        )

        self.converter_duration = Histogram(
            'converter_message_duration_seconds',
            'Time spent converting a message body',
            ['direction'],
            registry=self.registry
        )

        self.operation_duration = Histogram(
            'operation_duration_seconds',
            'Duration of timed library operations',
            ['operation', 'outcome'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_message(
        self,
        direction: str,
        media_type: str,
        outcome: str,
        duration: float
    ) -> None:
        """Record one converter read/write.

        Parameters
        - direction: ``read`` or ``write``
        - media_type: ``type/subtype`` without parameters
        - outcome: ``success`` or ``error``
        """
        self.converter_messages.labels(direction=direction, media_type=media_type, outcome=outcome).inc()
        self.converter_duration.labels(direction=direction).observe(duration)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, collector: Optional[MetricsCollector] = None) -> Callable:
    """Decorator to measure function execution time.

    The duration is observed in ``operation_duration_seconds`` of
    ``collector``, or of the process-wide collector when one has been created
    by ``get_metrics_collector``. Without either, only a log line is emitted.

    Example
    >>> @measure_time("create_converter")
    ... def create_converter(config):
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                _observe(collector, operation, "error", duration)
                logger.error(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    error=str(e),
                )
                raise
            duration = time.time() - start_time
            _observe(collector, operation, "success", duration)
            logger.debug(
                f"Operation {operation} completed",
                operation=operation,
                duration_ms=duration * 1000,
            )
            return result
        return wrapper
    return decorator


def _observe(collector: Optional[MetricsCollector], operation: str, outcome: str, duration: float) -> None:
    target = collector or _metrics_collector
    if target is not None:
        target.operation_duration.labels(operation=operation, outcome=outcome).observe(duration)

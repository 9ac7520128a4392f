"""
Observability for the Couchbase cache adapter.

Provides:
- OpenTelemetry tracing of cache operations
- In-process metrics: latencies, hit/miss counts, per-key failures
"""

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Tracing interface backed by OpenTelemetry.

    Uses the globally configured tracer provider when there is one, and
    otherwise installs an SDK provider tagged with ``service_name``. Falls
    back to no-op spans when disabled or when OpenTelemetry is not installed.
    """

    def __init__(self, service_name: str = "couchbase-cache", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = None

        if enabled:
            self._initialize_opentelemetry()

    def _initialize_opentelemetry(self):
        """Initialize OpenTelemetry tracing, installing a provider if none is set."""
        try:
            from opentelemetry import trace
            from opentelemetry.sdk.resources import SERVICE_NAME, Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
        except ImportError:
            logger.warning(
                "OpenTelemetry not available. Install with: "
                "pip install opentelemetry-api opentelemetry-sdk"
            )
            self.enabled = False
            return

        if not isinstance(trace.get_tracer_provider(), trace.ProxyTracerProvider):
            self._tracer = trace.get_tracer(__name__)
            logger.info("Using existing OpenTelemetry tracer provider")
            return

        resource = Resource(attributes={SERVICE_NAME: self.service_name})
        provider = TracerProvider(resource=resource)

        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
            logger.info("OpenTelemetry OTLP exporter configured")
        except ImportError:
            from opentelemetry.sdk.trace.export import ConsoleSpanExporter
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("OpenTelemetry console exporter configured (OTLP not available)")

        trace.set_tracer_provider(provider)
        self._tracer = trace.get_tracer(__name__)
        logger.info(f"OpenTelemetry tracing initialized for {self.service_name}")

    @contextmanager
    def span(self, name: str, attributes: Optional[dict[str, Any]] = None) -> Iterator[Any]:
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "couchbase.fetch", "couchbase.save")
            attributes: Span attributes

        Yields:
            The active span, or None when tracing is disabled
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        from opentelemetry import trace

        with self._tracer.start_as_current_span(name) as span:
            if attributes:
                for key, value in attributes.items():
                    span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))

            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


# ============================================================================
# Cache Metrics
# ============================================================================

class CacheMetrics:
    """
    Tracks cache operation metrics.

    Tracks:
    - Call counts and latency per operation
    - Fetch hits and misses
    - Per-key failures per operation

    Not synchronized; an adapter instance is used from one thread at a time.
    """

    def __init__(self, service_name: str = "couchbase_cache"):
        self.service_name = service_name
        self.operation_counts: dict[str, int] = defaultdict(int)
        self.total_latency_ms: dict[str, float] = defaultdict(float)
        self.max_latency_ms: dict[str, float] = defaultdict(float)
        self.key_counts: dict[str, int] = defaultdict(int)
        self.failure_counts: dict[str, int] = defaultdict(int)
        self.cache_hits = 0
        self.cache_misses = 0
        self.start_time = time.time()

    def record_operation(self, operation: str, latency_ms: float, keys: int = 1, failures: int = 0):
        """
        Record one batch call.

        Args:
            operation: Operation name (fetch, have, delete, save)
            latency_ms: Call latency in milliseconds
            keys: Number of keys in the batch
            failures: Number of keys that failed
        """
        self.operation_counts[operation] += 1
        self.total_latency_ms[operation] += latency_ms
        self.max_latency_ms[operation] = max(self.max_latency_ms[operation], latency_ms)
        self.key_counts[operation] += keys
        if failures:
            self.failure_counts[operation] += failures

    def record_hits(self, hits: int, misses: int):
        self.cache_hits += hits
        self.cache_misses += misses

    def get_stats(self) -> dict[str, Any]:
        """
        Get current metrics.

        Returns:
            Dictionary with per-operation stats and hit rate
        """
        total_lookups = self.cache_hits + self.cache_misses

        return {
            "uptime_seconds": time.time() - self.start_time,
            "operations": {
                operation: {
                    "calls": calls,
                    "keys": self.key_counts[operation],
                    "failed_keys": self.failure_counts[operation],
                    "avg_latency_ms": self.total_latency_ms[operation] / calls,
                    "max_latency_ms": self.max_latency_ms[operation],
                }
                for operation, calls in self.operation_counts.items()
            },
            "cache": {
                "hits": self.cache_hits,
                "misses": self.cache_misses,
                "hit_rate": self.cache_hits / total_lookups if total_lookups > 0 else 0.0,
            },
        }

    def reset(self):
        """Reset all metrics counters."""
        self.operation_counts.clear()
        self.total_latency_ms.clear()
        self.max_latency_ms.clear()
        self.key_counts.clear()
        self.failure_counts.clear()
        self.cache_hits = 0
        self.cache_misses = 0
        self.start_time = time.time()

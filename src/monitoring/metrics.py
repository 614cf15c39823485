"""Prometheus metrics for the photo pipeline"""

import time
import logging
from prometheus_client import Counter, Histogram, Gauge

logger = logging.getLogger(__name__)


# Storage metrics
storage_operations_total = Counter(
    'storage_operations_total',
    'Total number of storage operations',
    ['provider', 'operation', 'status']
)

storage_operation_duration_seconds = Histogram(
    'storage_operation_duration_seconds',
    'Time spent on storage operations',
    ['provider', 'operation'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0]
)

storage_retries_total = Counter(
    'storage_retries_total',
    'Total number of storage operation retries',
    ['provider', 'operation']
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    'circuit_breaker_state',
    'Circuit breaker state (0=closed, 1=open, 2=half_open)',
    ['name']
)

circuit_breaker_calls_total = Counter(
    'circuit_breaker_calls_total',
    'Calls seen by a circuit breaker',
    ['name', 'outcome']
)

circuit_breaker_transitions_total = Counter(
    'circuit_breaker_transitions_total',
    'Circuit breaker state transitions',
    ['name', 'from_state', 'to_state']
)

# Saga metrics
saga_runs_total = Counter(
    'saga_runs_total',
    'Processing saga runs by outcome',
    ['outcome']
)

saga_duration_seconds = Histogram(
    'saga_duration_seconds',
    'Duration of one processing saga run',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

uploads_total = Counter(
    'uploads_total',
    'Upload pipeline runs by outcome',
    ['outcome']
)

# Event metrics
events_published_total = Counter(
    'events_published_total',
    'Events handed to a publisher',
    ['provider', 'event_type', 'status']
)

# Fallback queue metrics
processing_queue_items_total = Counter(
    'processing_queue_items_total',
    'Fallback queue items processed by outcome',
    ['command_type', 'outcome']
)

# Worker pool metrics
worker_pool_caller_runs_total = Counter(
    'worker_pool_caller_runs_total',
    'Tasks executed on the submitting thread because the pool was saturated'
)

worker_pool_in_flight = Gauge(
    'worker_pool_in_flight',
    'Tasks running or queued on the worker pool'
)


class MetricsCollector:
    """Thin recording facade over the module-level metrics"""

    STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}

    def record_storage_operation(
        self,
        provider: str,
        operation: str,
        status: str,
        duration_seconds: float
    ):
        """Record a storage operation"""
        storage_operations_total.labels(
            provider=provider,
            operation=operation,
            status=status
        ).inc()

        storage_operation_duration_seconds.labels(
            provider=provider,
            operation=operation
        ).observe(duration_seconds)

    def record_storage_retry(self, provider: str, operation: str):
        storage_retries_total.labels(provider=provider, operation=operation).inc()

    def record_circuit_breaker_state(self, name: str, state: str):
        """Record circuit breaker state"""
        state_value = self.STATE_VALUES.get(state.lower(), 0)
        circuit_breaker_state.labels(name=name).set(state_value)

    def record_circuit_breaker_call(self, name: str, outcome: str):
        circuit_breaker_calls_total.labels(name=name, outcome=outcome).inc()

    def record_circuit_breaker_transition(self, name: str, from_state: str, to_state: str):
        circuit_breaker_transitions_total.labels(
            name=name, from_state=from_state, to_state=to_state
        ).inc()
        self.record_circuit_breaker_state(name, to_state)

    def record_saga(self, outcome: str, duration_seconds: float):
        """Record a finished saga run"""
        saga_runs_total.labels(outcome=outcome).inc()
        saga_duration_seconds.observe(duration_seconds)

    def record_upload(self, outcome: str):
        uploads_total.labels(outcome=outcome).inc()

    def record_event_published(self, provider: str, event_type: str, status: str):
        events_published_total.labels(
            provider=provider,
            event_type=event_type,
            status=status
        ).inc()

    def record_queue_item(self, command_type: str, outcome: str):
        processing_queue_items_total.labels(command_type=command_type, outcome=outcome).inc()

    def record_caller_runs(self):
        worker_pool_caller_runs_total.inc()

    def set_pool_in_flight(self, count: int):
        worker_pool_in_flight.set(count)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class MetricsTimer:
    """Context manager for timing operations"""

    def __init__(self, callback):
        self.callback = callback
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.perf_counter() - self.start_time
        self.callback(duration, exc_type)
        return False

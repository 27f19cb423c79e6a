"""
Observability for mysqllock: the tracer seam and span attribute names.
"""

from mysqllock.observability.attributes import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_HELD_SECONDS,
    ATTR_LOCK_HOLDER_ID,
    ATTR_LOCK_KEEPALIVE_MODE,
    ATTR_LOCK_NAME,
    ATTR_LOCK_WAIT_TIMEOUT,
)
from mysqllock.observability.tracer import (
    OTEL_AVAILABLE,
    MockSpan,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
    get_tracer,
    should_trace,
)

__all__ = [
    "OTEL_AVAILABLE",
    "get_tracer",
    "should_trace",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockSpan",
    "MockTracer",
    "create_tracer",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_LOCK_NAME",
    "ATTR_LOCK_WAIT_TIMEOUT",
    "ATTR_LOCK_KEEPALIVE_MODE",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LOCK_HOLDER_ID",
    "ATTR_LOCK_HELD_SECONDS",
    "ATTR_ERROR_TYPE",
]

"""
Tracing for lock acquisition and release.

Lock code never talks to OpenTelemetry directly: it is handed a ``Tracer``
and opens spans through it. OpenTelemetry itself is optional (the
``telemetry`` extra); without it every tracer is a ``NullTracer``.

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("mysqllock.acquire", {"mysqllock.lock.name": "jobs"}) as span:
    ...     if span is not None:
    ...         span.set_attribute("mysqllock.lock.acquired", True)
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def get_tracer(name: str) -> Any:
    """Return an OpenTelemetry tracer, or None when OpenTelemetry is missing."""
    if not OTEL_AVAILABLE:
        return None
    return trace.get_tracer(name)


def should_trace(enable_tracing: bool) -> bool:
    """True if spans should be emitted: tracing requested and OpenTelemetry installed."""
    return bool(enable_tracing) and OTEL_AVAILABLE


def _clean(attributes: dict[str, Any] | None) -> dict[str, Any]:
    # OpenTelemetry rejects None attribute values
    return {key: value for key, value in (attributes or {}).items() if value is not None}


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a lock operation."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        """
        Open a span.

        Args:
            name: Span name, e.g. "mysqllock.acquire"
            attributes: Initial span attributes

        Returns:
            Context manager yielding an object with ``set_attribute`` or None
        """
        ...

    @property
    def enabled(self) -> bool:
        """True if spans are actually recorded."""
        ...


class NullTracer:
    """Tracer that records nothing. Spans yield None."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer emitting OpenTelemetry spans.

    Exceptions leaving a span are recorded on it and mark it as failed.

    Args:
        tracer_name: Instrumentation scope name (typically __name__)

    Raises:
        ImportError: If OpenTelemetry is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        otel_tracer = get_tracer(tracer_name)
        if otel_tracer is None:
            raise ImportError("OpenTelemetry is not installed (pip install mysqllock[telemetry])")
        self._tracer = otel_tracer

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span]:
        return self._tracer.start_as_current_span(
            name,
            attributes=_clean(attributes),
            record_exception=True,
            set_status_on_exception=True,
        )

    @property
    def enabled(self) -> bool:
        return True


class MockSpan:
    """Span handed out by MockTracer; attributes set on it are recorded."""

    def __init__(self, attributes: dict[str, Any]) -> None:
        self.attributes = attributes

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer for tests: records every span with its final attributes.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("mysqllock.release", {"mysqllock.lock.name": "jobs"}):
        ...     pass
        >>> tracer.span_names
        ['mysqllock.release']
        >>> tracer.attributes("mysqllock.release")
        {'mysqllock.lock.name': 'jobs'}
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any]]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[MockSpan]:
        recorded = dict(attributes or {})
        self.spans.append((name, recorded))
        yield MockSpan(recorded)

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        """Names of the recorded spans, in order."""
        return [name for name, _ in self.spans]

    def attributes(self, name: str) -> dict[str, Any]:
        """
        Attributes of the first span with the given name.

        Raises:
            KeyError: If no such span was recorded
        """
        for span_name, attributes in self.spans:
            if span_name == name:
                return attributes
        raise KeyError(name)

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Build the tracer a lock component should use.

    Args:
        name: Instrumentation scope name (typically __name__)
        enable_tracing: False forces a NullTracer

    Returns:
        OpenTelemetryTracer when tracing is enabled and available,
        NullTracer otherwise
    """
    if should_trace(enable_tracing):
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "MockSpan",
    "MockTracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "Tracer",
    "create_tracer",
    "get_tracer",
    "should_trace",
]

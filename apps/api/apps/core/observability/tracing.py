"""
Tracing support (OpenTelemetry API).

Spans are no-ops unless an OpenTelemetry SDK is configured by the
deployment. Span start/end is also logged at debug level.
"""
import logging
import time
from contextlib import contextmanager
from typing import Optional, Dict, Any

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)

_SPAN_KINDS = {
    'server': SpanKind.SERVER,
    'client': SpanKind.CLIENT,
    'internal': SpanKind.INTERNAL,
}


@contextmanager
def trace_span(
    name: str,
    kind: Optional[str] = None,
    attributes: Optional[Dict[str, Any]] = None
):
    """
    Context manager for creating trace spans.

    Args:
        name: Span name
        kind: Span kind (server, client, internal)
        attributes: Span attributes

    Usage:
        with trace_span('consume_session', attributes={'order_id': str(order.id)}):
            # ... operation ...
    """
    start_time = time.time()
    span_kind = _SPAN_KINDS.get(kind, SpanKind.INTERNAL)

    logger.debug(
        f'Span started: {name}',
        extra={
            'event': 'span_start',
            'span_name': name,
            'attributes': attributes or {}
        }
    )

    with tracer.start_as_current_span(name, kind=span_kind, attributes=attributes) as span:
        try:
            yield span
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            span.set_status(Status(StatusCode.ERROR, e.__class__.__name__))
            span.set_attribute('error.type', e.__class__.__name__)
            logger.debug(
                f'Span failed: {name}',
                extra={
                    'event': 'span_error',
                    'span_name': name,
                    'duration_ms': round(duration_ms, 2),
                    'error_type': e.__class__.__name__,
                }
            )
            raise
        else:
            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                f'Span completed: {name}',
                extra={
                    'event': 'span_complete',
                    'span_name': name,
                    'duration_ms': round(duration_ms, 2),
                }
            )

"""
Observability wrapper for public engine operations.
"""
import time
from functools import wraps

from django.core.exceptions import ObjectDoesNotExist

from apps.clinical.exceptions import SessionEngineError
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.tracing import trace_span

logger = get_sanitized_logger(__name__)


def engine_operation(name):
    """
    Decorator adding a span, a duration histogram and error accounting.

    Typed engine errors are counted and logged at warning level, anything
    else at error level. Both are re-raised unchanged.

    Usage:
        @engine_operation('book_appointment')
        @transaction.atomic
        def book_appointment(...):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            with trace_span(name, attributes={'operation': name}):
                try:
                    return func(*args, **kwargs)
                except SessionEngineError as e:
                    metrics.engine_errors_total.labels(operation=name, error=e.code).inc()
                    logger.warning(
                        f'{name} rejected: {e.code}',
                        extra={
                            'event': 'engine_operation_rejected',
                            'operation': name,
                            'error_code': e.code,
                            'error_type': e.__class__.__name__,
                        }
                    )
                    raise
                except ObjectDoesNotExist:
                    raise
                except Exception as e:
                    metrics.exceptions_total.labels(
                        exception_type=e.__class__.__name__,
                        location=name
                    ).inc()
                    logger.error(
                        f'{name} failed: {e.__class__.__name__}',
                        extra={
                            'event': 'engine_operation_failed',
                            'operation': name,
                            'error_type': e.__class__.__name__,
                        },
                        exc_info=True
                    )
                    raise
                finally:
                    metrics.engine_operation_duration_seconds.labels(operation=name).observe(
                        time.time() - start_time
                    )
        return wrapper
    return decorator

"""
Structured logging with PHI/PII protection.

Engine records carry entity ids (appointment_id, order_id, ...) and the
acting user; free text written by staff (reasons, notes, summaries) never
reaches the log output.
"""
import logging
import json
import uuid
from datetime import datetime, timezone
from .correlation import get_request_id, get_trace_id, get_user_id, get_user_roles

REDACTED = '[REDACTED]'

# Fields that should NEVER be logged (PHI/PII)
SENSITIVE_FIELDS = {
    'password',
    'token',
    'secret',
    'api_key',
    'notes',
    'reason',
    'observations',
    'evolution',
    'results',
    'template_data',
    'first_name',
    'last_name',
    'email',
    'phone',
    'document_number',
    'professional_name',
}

# no_show_reason, revert_reason, discharge_notes, final_summary, ...
SENSITIVE_SUFFIXES = ('_reason', '_notes', '_summary')

# Identifiers of engine entities; rendered as plain strings
ENTITY_ID_FIELDS = (
    'appointment_id',
    'order_id',
    'session_order_id',
    'patient_id',
    'doctor_id',
    'actor_id',
    'original_id',
    'replacement_id',
)

# LogRecord attributes that are not caller-supplied extras
RESERVED_ATTRS = frozenset(
    logging.LogRecord('', 0, '', 0, '', None, None).__dict__
) | {'message', 'asctime', 'request_id', 'trace_id', 'user_id', 'user_roles'}


def is_sensitive(key):
    key = key.lower()
    return key in SENSITIVE_FIELDS or key.endswith(SENSITIVE_SUFFIXES)


def _render_id(value):
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return str(value)
    # Model instances passed where an id was expected
    pk = getattr(value, 'pk', None)
    return str(pk) if pk is not None else str(value)


def _sanitize_value(key, value):
    if is_sensitive(key):
        return REDACTED
    if key in ENTITY_ID_FIELDS:
        return _render_id(value)
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_dict(v) if isinstance(v, dict) else v for v in value]
    return value


class CorrelationFilter(logging.Filter):
    """
    Logging filter that injects correlation context into log records.

    Engine records (those naming an entity id) that were logged without an
    explicit actor_id get the request user as actor.
    """

    def filter(self, record):
        record.request_id = get_request_id() or '-'
        record.trace_id = get_trace_id() or '-'
        record.user_id = get_user_id() or '-'
        record.user_roles = ','.join(get_user_roles()) or '-'

        if (getattr(record, 'actor_id', None) is None
                and get_user_id()
                and any(hasattr(record, field) for field in ENTITY_ID_FIELDS)):
            record.actor_id = get_user_id()
        return True


class SanitizedJSONFormatter(logging.Formatter):
    """
    JSON formatter that sanitizes sensitive fields.
    """

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', '-'),
            'trace_id': getattr(record, 'trace_id', '-'),
            'user_id': getattr(record, 'user_id', '-'),
            'user_roles': getattr(record, 'user_roles', '-'),
        }

        # Extras from extra={} in logging calls
        for key, value in record.__dict__.items():
            if key in RESERVED_ATTRS or key.startswith('_'):
                continue
            log_data[key] = _sanitize_value(key, value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_sanitized_logger(name):
    """
    Get a logger with correlation filter applied.

    Usage:
        logger = get_sanitized_logger(__name__)
        logger.info('Session consumed', extra={'event': 'session_consumed', 'order_id': order.id})
    """
    logger = logging.getLogger(name)

    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())

    return logger


def sanitize_dict(data):
    """
    Sanitized copy of a dictionary: sensitive keys redacted, entity ids
    rendered as strings, nested dictionaries handled recursively.
    """
    if not isinstance(data, dict):
        return data
    return {key: _sanitize_value(key, value) for key, value in data.items()}

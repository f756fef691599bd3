"""
Engine tunables, read from settings.CLINICAL_ENGINE with defaults.
"""
from django.conf import settings

DEFAULTS = {
    'SLOT_CAPACITY': 3,
    'NO_SHOW_ALERT_THRESHOLD': 2,
    'UNDO_WINDOW_HOURS': 24,
    'RESCHEDULE_REASON_MIN_LENGTH': 5,
    'MAX_SERIES_SESSIONS': 20,
    'DEFAULT_APPOINTMENT_DURATION': 30,
}


def engine_setting(name):
    """Return a CLINICAL_ENGINE value, falling back to DEFAULTS."""
    overrides = getattr(settings, 'CLINICAL_ENGINE', {}) or {}
    return overrides.get(name, DEFAULTS[name])

"""
Typed errors raised by the appointment/session engine.

Every error is a Django ValidationError so model clean() and service code
can raise them interchangeably. Views map them to HTTP responses:

- BookingValidationError family -> 400
- EngineStateError family -> 409
- StaleRecordError -> 409
"""
from django.core.exceptions import ValidationError


class SessionEngineError(ValidationError):
    """Base class for all engine errors. Carries a stable `code`."""
    default_message = 'Operation rejected by the session engine'
    default_code = 'engine_error'

    def __init__(self, message=None, code=None, params=None):
        super().__init__(
            message or self.default_message,
            code=code or self.default_code,
            params=params,
        )


# ============================================================================
# Validation errors
# ============================================================================

class BookingValidationError(SessionEngineError):
    default_code = 'validation_error'


class DuplicateBooking(BookingValidationError):
    """Raised when the patient already holds this doctor/date/time slot."""
    default_message = 'The patient already has an appointment with this doctor at this date and time'
    default_code = 'duplicate_booking'


class SlotSaturated(BookingValidationError):
    """Raised when the doctor/date/time slot already holds the maximum bookings."""
    default_message = 'This time slot is already fully booked'
    default_code = 'slot_saturated'


class MedicalOrderRequired(BookingValidationError):
    """Raised when a patient with open sessions books without selecting an order."""
    default_message = 'The patient has an active medical order; select it for this booking'
    default_code = 'medical_order_required'


class InvalidOrderSelection(BookingValidationError):
    default_message = 'The selected medical order does not belong to the patient or is already closed'
    default_code = 'invalid_order_selection'


class ReasonRequired(BookingValidationError):
    default_message = 'A reason is required'
    default_code = 'reason_required'


class ReasonTooShort(BookingValidationError):
    default_message = 'The reason is too short'
    default_code = 'reason_too_short'


class InvalidNoShowOption(BookingValidationError):
    default_message = 'Unknown no-show option'
    default_code = 'invalid_no_show_option'


# ============================================================================
# State errors
# ============================================================================

class EngineStateError(SessionEngineError):
    default_code = 'state_error'


class InvalidTransition(EngineStateError):
    """Raised when an event is not allowed from the appointment's current status."""
    default_message = 'Status transition not allowed'
    default_code = 'invalid_transition'


class SessionsExhausted(EngineStateError):
    """Raised when a session is requested from an order whose pool is used up."""
    default_message = 'The medical order has no sessions left'
    default_code = 'sessions_exhausted'


class SessionsIncomplete(EngineStateError):
    default_message = 'The treatment sessions are not complete yet'
    default_code = 'sessions_incomplete'


class NoActiveOrder(EngineStateError):
    default_message = 'The patient has no active medical order'
    default_code = 'no_active_order'


class NothingToPardon(EngineStateError):
    default_message = 'The patient has no unpardoned no-shows'
    default_code = 'nothing_to_pardon'


class NothingToUndo(EngineStateError):
    default_message = 'There is no status change that can be undone'
    default_code = 'nothing_to_undo'


class UndoWindowExpired(EngineStateError):
    default_message = 'The status change is too old to be undone'
    default_code = 'undo_window_expired'


class AppointmentNotEditable(EngineStateError):
    default_message = 'Only scheduled or confirmed appointments can be edited'
    default_code = 'appointment_not_editable'


class InvalidReassignment(EngineStateError):
    default_message = 'Only attended appointments can be moved to another medical order'
    default_code = 'invalid_reassignment'


# ============================================================================
# Storage errors
# ============================================================================

class StaleRecordError(SessionEngineError):
    """
    Raised when a row changed between read and write (row_version mismatch).

    The caller should reload and retry the whole operation at most once.
    """
    default_message = 'The record was modified by another user; reload and try again'
    default_code = 'stale_record'

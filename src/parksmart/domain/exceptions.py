# File: src/parksmart/domain/exceptions.py
"""
Booking core exceptions

Each error carries a stable error code and a human-readable reason that
presentation layers can show as-is. The application service turns these
into failure results; they never escape to callers as crashes.
"""


class BookingError(Exception):
    """Base exception for booking core errors"""

    error_code = "BOOKING_ERROR"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FacilityNotFound(BookingError):
    """Exception when a facility id does not resolve"""

    error_code = "FACILITY_NOT_FOUND"


class SlotUnavailable(BookingError):
    """Exception when a requested or derived slot is missing or not available"""

    error_code = "SLOT_UNAVAILABLE"


class DuplicateActiveBooking(BookingError):
    """Exception when a customer already holds an active booking at the facility"""

    error_code = "DUPLICATE_ACTIVE_BOOKING"


class BookingNotFound(BookingError):
    """Exception when a booking id does not resolve"""

    error_code = "BOOKING_NOT_FOUND"


class InvalidStateTransition(BookingError):
    """Exception for end/cancel on a booking that is no longer active"""

    error_code = "INVALID_STATE_TRANSITION"


class InvalidFacilityConfiguration(BookingError):
    """Exception for facility registration data that breaks an invariant"""

    error_code = "INVALID_FACILITY"


class ConcurrencyConflict(BookingError):
    """Exception when an optimistic version check fails at the store"""

    error_code = "CONCURRENCY_CONFLICT"

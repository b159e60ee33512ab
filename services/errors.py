"""
Booking engine errors.

Every failure carries a machine-readable `code` and the HTTP status the API
layer answers with; `message` is safe to show to the client as-is.
"""


class BookingError(Exception):
    """Base class for failures raised by the booking and payment engine."""

    code = "BOOKING_ERROR"
    status_code = 400
    retryable = False
    default_message = "Booking operation failed"

    def __init__(self, message: str = None, details: dict = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        if self.retryable:
            out["retryable"] = True
        return out


# ---------- validation ----------

class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class InvalidTimeFormat(ValidationError):
    code = "INVALID_TIME_FORMAT"
    default_message = "Time must be HH:MM (24-hour)"


class InvalidDuration(ValidationError):
    code = "INVALID_DURATION"
    default_message = "Duration must be a positive number of minutes"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be greater than zero"


# ---------- authorization ----------

class Unauthorized(BookingError):
    code = "UNAUTHORIZED"
    status_code = 403
    default_message = "Unauthorized action"


# ---------- lookups ----------

class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class AppointmentNotFound(NotFound):
    code = "APPOINTMENT_NOT_FOUND"
    default_message = "Appointment not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class TreatmentNotFound(NotFound):
    code = "TREATMENT_NOT_FOUND"
    default_message = "Treatment not found"


# ---------- conflicts ----------

class Conflict(BookingError):
    status_code = 409
    code = "CONFLICT"


class SlotConflict(Conflict):
    code = "SLOT_CONFLICT"
    retryable = True
    default_message = "Practitioner is not available for this time slot"


class BookingNumberConflict(Conflict):
    code = "BOOKING_NUMBER_CONFLICT"
    retryable = True
    default_message = "Could not allocate a booking number, please try again"


class TreatmentUnavailable(Conflict):
    code = "TREATMENT_UNAVAILABLE"
    default_message = "Treatment not available"


class PaymentMismatch(Conflict):
    code = "PAYMENT_MISMATCH"
    default_message = "Payment does not match the pending payment for this appointment"


# ---------- state preconditions ----------

class NotEligible(BookingError):
    code = "NOT_ELIGIBLE"
    status_code = 422
    default_message = "Appointment is not eligible for this action"


class InsufficientCredit(BookingError):
    code = "INSUFFICIENT_CREDIT"
    status_code = 422
    default_message = "Insufficient credit balance"


class NoPendingPayment(BookingError):
    code = "NO_PENDING_PAYMENT"
    status_code = 422
    default_message = "No pending payment found"


# ---------- external ----------

class GatewayError(BookingError):
    code = "GATEWAY_ERROR"
    status_code = 502
    default_message = "Payment gateway error"

"""
Domain error taxonomy.

Services raise these; the exception handler registered in main.py renders
them as ``{"success": false, "error": <message>, "code": <code>}`` with the
class-level HTTP status. Callers that care about the kind of failure rather
than the exact reason catch the intermediate bases (Conflict, Validation).
"""

from __future__ import annotations


class TripCrewError(Exception):
    status_code: int = 400
    code: str = "ERROR"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# -- NotFound ---------------------------------------------------------------

class NotFound(TripCrewError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found."


# -- Conflict ---------------------------------------------------------------

class Conflict(TripCrewError):
    code = "CONFLICT"


class AlreadyMember(Conflict):
    code = "ALREADY_MEMBER"
    default_message = "Already a member of this event."


class AlreadyPending(Conflict):
    code = "ALREADY_PENDING"
    default_message = "A request is already pending for this event."


class AlreadyProcessed(Conflict):
    code = "ALREADY_PROCESSED"
    default_message = "This request has already been processed."


class AlreadyCheckedIn(Conflict):
    code = "ALREADY_CHECKED_IN"
    default_message = "Already checked in."


class SelfInvite(Conflict):
    code = "SELF_INVITE"
    default_message = "You are already part of this event."


# -- InvariantViolation -----------------------------------------------------

class LastOrganizer(TripCrewError):
    code = "LAST_ORGANIZER"
    default_message = "Cannot remove the last organizer of this event."


# -- Validation -------------------------------------------------------------

class Validation(TripCrewError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request."


class ValidationFailed(Validation):
    pass


class InvalidRole(Validation):
    code = "INVALID_ROLE"
    default_message = "Invalid role: must be one of organizer, member."


class InvalidPaymentStatus(Validation):
    code = "INVALID_PAYMENT_STATUS"
    default_message = "Invalid payment status: must be one of pending, paid, refunded."


class InvalidPayload(Validation):
    code = "INVALID_PAYLOAD"
    default_message = "Invalid QR code."


class EventMismatch(Validation):
    code = "EVENT_MISMATCH"
    default_message = "QR code does not match this event."


class StepOutOfBounds(Validation):
    code = "STEP_OUT_OF_BOUNDS"
    default_message = "Step scheduled time must fall within the event dates."


# -- Auth -------------------------------------------------------------------

class Unauthenticated(TripCrewError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Not authenticated."


class Forbidden(TripCrewError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access denied."


# -- Infrastructure ---------------------------------------------------------

class Unavailable(TripCrewError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable."

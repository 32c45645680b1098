"""
Typed failures of the dispatch core.

Every error carries a stable ``code`` (used in realtime ``error`` events and
REST bodies) and the HTTP status the API layer maps it to.
"""

from __future__ import annotations


class RideHailError(Exception):
    code = "error"
    http_status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


# ── Conflict ──────────────────────────────────────────────────────────


class AlreadyAccepted(RideHailError):
    """Another driver won the accept race for this ride."""

    code = "already_accepted"
    http_status = 409
    default_message = "Ride already accepted by another driver"


# ── Precondition ──────────────────────────────────────────────────────


class InvalidTransition(RideHailError):
    code = "invalid_transition"
    http_status = 409
    default_message = "Ride cannot move to the requested status"


class OtpNotVerified(RideHailError):
    code = "otp_not_verified"
    http_status = 400
    default_message = "OTP must be verified before completing the ride"


class InvalidOtp(RideHailError):
    code = "invalid_otp"
    http_status = 400
    default_message = "Invalid OTP"


# ── Not found ─────────────────────────────────────────────────────────


class RideNotFound(RideHailError):
    code = "ride_not_found"
    http_status = 404
    default_message = "Ride not found"


class UserNotFound(RideHailError):
    code = "user_not_found"
    http_status = 404
    default_message = "User not found"


# ── Authorization ─────────────────────────────────────────────────────


class AuthError(RideHailError):
    code = "auth_error"
    http_status = 401
    default_message = "Authentication error"


class NotAuthorized(RideHailError):
    code = "not_authorized"
    http_status = 403
    default_message = "Not allowed to act on this ride"


# ── Infrastructure ────────────────────────────────────────────────────


class InfrastructureError(RideHailError):
    """Retryable failure of storage or transport."""

    code = "unavailable"
    http_status = 503
    default_message = "Service temporarily unavailable"


class PresenceUnavailable(InfrastructureError):
    code = "presence_unavailable"
    default_message = "Presence store unavailable"


class NotificationError(InfrastructureError):
    code = "notification_unavailable"
    default_message = "Notification transport unavailable"

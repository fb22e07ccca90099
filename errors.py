"""
Error taxonomy for the store API.

Every error carries the HTTP status it is rendered with; `main.py` installs a
single handler for `StoreError` that turns it into `{"detail": message}`.
"""


class StoreError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StoreError):
    status_code = 400
    default_message = "Invalid request"


class AuthError(StoreError):
    status_code = 401
    default_message = "Invalid or expired token"


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class Conflict(StoreError):
    status_code = 409
    default_message = "Conflict"


class InvalidState(StoreError):
    status_code = 400
    default_message = "Operation not allowed in the current state"


class InvariantViolation(StoreError):
    status_code = 400
    default_message = "Invariant violated"


class UpstreamError(StoreError):
    status_code = 502
    default_message = "Upstream service failed"


class StorageError(UpstreamError):
    default_message = "File upload failed"


class EmailError(UpstreamError):
    default_message = "Email delivery failed"


class GatewayError(UpstreamError):
    default_message = "Payment gateway request failed"

"""
Domain errors raised by the stores, the auth service and the access policy.

Every error carries a human-readable message and the HTTP status code it is
rendered with. They are terminal: the handler in app.main turns them into
a response as-is.
"""


class MessagelyError(Exception):
    """Base class for client-facing errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DuplicateIdentity(MessagelyError):
    status_code = 400


class InvalidCredentials(MessagelyError):
    status_code = 400


class InvalidToken(MessagelyError):
    status_code = 401


class Unauthorized(MessagelyError):
    status_code = 401


class NotFound(MessagelyError):
    status_code = 404

"""Typed errors raised by the queue core and rendered by the API layer.

Every failure the service reports resolves to one of these classes; the
exception handler in ``main.py`` turns them into JSON bodies of the form
``{"error": code, "message": ..., "retryable": bool}``.
"""

from typing import Any, Dict, Optional


class QueueError(Exception):
    code = "Error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        body.update(self.details)
        return body


class Unauthenticated(QueueError):
    code = "Unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Please sign in to continue", **kwargs):
        super().__init__(message, **kwargs)


class PermissionDenied(QueueError):
    code = "PermissionDenied"
    status_code = 403


class InvalidArgument(QueueError):
    code = "InvalidArgument"
    status_code = 400


class NotFound(QueueError):
    code = "NotFound"
    status_code = 404


class FailedPrecondition(QueueError):
    code = "FailedPrecondition"
    status_code = 412


class Conflict(QueueError):
    code = "Conflict"
    status_code = 409
    retryable = True


class Unavailable(QueueError):
    code = "Unavailable"
    status_code = 503
    retryable = True

from enum import Enum


class ErrorKind(str, Enum):
    validation_failed = "validation_failed"
    conflict = "conflict"
    not_found = "not_found"
    invalid_credentials = "invalid_credentials"
    invalid_token = "invalid_token"
    expired = "token_expired"
    unavailable = "unavailable"


class ServiceError(ValueError):
    """Base class for failures reported by the service layer.

    Every subclass carries a ``kind`` tag; the HTTP layer maps the tag to a
    status code, so callers never need to inspect the message text.
    """

    kind: ErrorKind = ErrorKind.validation_failed


class ValidationFailed(ServiceError):
    kind = ErrorKind.validation_failed


class Conflict(ServiceError):
    kind = ErrorKind.conflict


class NotFound(ServiceError):
    kind = ErrorKind.not_found


class InvalidCredentials(ServiceError):
    kind = ErrorKind.invalid_credentials


class InvalidToken(ServiceError):
    kind = ErrorKind.invalid_token


class TokenExpired(ServiceError):
    kind = ErrorKind.expired


class Unavailable(ServiceError):
    kind = ErrorKind.unavailable

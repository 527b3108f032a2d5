"""
Error types raised by the marking utilities and turned into JSON responses
by the handler registered in ``load(app)``.
"""


class MarkingError(Exception):
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {"message": self.message}


class ValidationError(MarkingError):
    """Malformed or out-of-range input."""
    status_code = 400


class Unauthorized(MarkingError):
    status_code = 401


class Forbidden(MarkingError):
    """Identity or role does not allow the action."""
    status_code = 403


class NotFoundError(MarkingError):
    status_code = 404


class Conflict(MarkingError):
    """Duplicate invite/membership or a unique-constraint violation."""
    status_code = 409


class Expired(MarkingError):
    """Verification code or invite token no longer usable."""
    status_code = 410


class UpstreamError(MarkingError):
    """E-mail transport failure."""
    status_code = 502


def text_value(value, field):
    """Return ``value`` stripped; None reads as empty, other non-strings are rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip()

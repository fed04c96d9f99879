from __future__ import annotations


class PhoneCreditsError(Exception):
    """
    Base class for failures surfaced to API callers.

    `status_code` and `code` are read by the HTTP exception handlers; the
    message is shown to the user as-is.
    """

    status_code: int = 500
    code: str = "internal_failure"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(PhoneCreditsError, LookupError):
    status_code = 404
    code = "not_found"


class InsufficientCreditsError(PhoneCreditsError, ValueError):
    status_code = 400
    code = "insufficient_credits"

    def __init__(self, message: str = "Insufficient credits") -> None:
        super().__init__(message)


class InvalidInputError(PhoneCreditsError, ValueError):
    status_code = 400
    code = "invalid_input"


class UnauthenticatedError(PhoneCreditsError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class ForbiddenError(PhoneCreditsError):
    status_code = 403
    code = "forbidden"


class UpstreamUnavailableError(PhoneCreditsError):
    """Payment or number provider not configured (501) or failing (502)."""

    status_code = 501
    code = "upstream_unavailable"


class DuplicateRecordError(InvalidInputError):
    """A write collided with a unique key (slug, payment reference, ...)."""

"""Domain errors raised by the resolution service and the store adapter.

Each error carries the HTTP status the transport layer renders it with, so
routes never translate errors one by one.
"""

__all__ = [
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "ShortLinkError",
]


class ShortLinkError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(ShortLinkError):
    """Input passed schema validation but breaks a business rule (e.g. past expiry)."""

    status_code = 400


class ForbiddenError(ShortLinkError):
    status_code = 403


class NotFoundError(ShortLinkError):
    """Code is absent or expired; both cases read the same to the caller."""

    status_code = 404


class ConflictError(ShortLinkError):
    status_code = 409

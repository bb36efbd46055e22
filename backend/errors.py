"""Error kinds for the access-token subsystem.

Each error carries the HTTP status it maps to at the API boundary, so the
endpoints can translate any of them with a single ``except`` clause.
"""

__all__ = [
    "AccessTokenError",
    "ValidationInputError",
    "TokenGenerationExhausted",
    "DispatchFailure",
    "InvalidToken",
    "TokenAlreadyUsed",
    "StoreUnavailable",
    "DuplicateToken",
]


class AccessTokenError(Exception):
    """Base class for all access-token errors."""

    status_code = 500
    default_message = "Access token operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationInputError(AccessTokenError):
    """Missing or malformed request fields; the operation is not attempted."""

    status_code = 400
    default_message = "Invalid request"


class TokenGenerationExhausted(AccessTokenError):
    """No unused token value was found within the retry budget.

    Scoped to a single email during issuance.
    """

    status_code = 500
    default_message = "token generation exhausted"


class DispatchFailure(AccessTokenError):
    """The token email could not be delivered.

    The token is already persisted and stays redeemable.
    """

    status_code = 502
    default_message = "email sending failed"


class InvalidToken(AccessTokenError):
    """No token matches the given form and token value."""

    status_code = 404
    default_message = "Invalid access token"


class TokenAlreadyUsed(AccessTokenError):
    """The token exists but has already been redeemed."""

    status_code = 403
    default_message = "This access token has already been used"


class StoreUnavailable(AccessTokenError):
    """The persistence layer could not be reached."""

    status_code = 503
    default_message = "store unavailable"


class DuplicateToken(AccessTokenError):
    """An insert lost a race on the unique token column."""

    status_code = 409
    default_message = "token already exists"

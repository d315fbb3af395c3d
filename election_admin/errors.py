"""Domain errors raised by the election lifecycle and account services."""


class ElectionAdminError(Exception):
    """Base class for domain-specific errors."""

    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ElectionAdminError):
    """Raised when input fails validation."""

    status_code = 422


class NotFoundError(ElectionAdminError):
    """Raised when an election, question or option cannot be found."""

    status_code = 404


class OwnershipError(ElectionAdminError):
    """Raised when the caller does not own the election."""

    status_code = 403


class InvalidStateError(ElectionAdminError):
    """Raised when an operation is illegal in the election's current state."""

    status_code = 409


class DuplicateBallotError(ElectionAdminError):
    """Raised when a voter casts a second ballot in the same election."""

    status_code = 409


class AuthenticationError(ElectionAdminError):
    """Raised when credentials are missing or do not match."""

    status_code = 401


class CSRFError(ElectionAdminError):
    """Raised when a state-changing request carries no valid CSRF token."""

    status_code = 403

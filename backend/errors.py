class MenuhubError(Exception):
    """Base class for errors raised by the order and payment modules."""


class ValidationError(MenuhubError):
    """A required field is missing or a value is not allowed."""


class InvalidTransitionError(ValidationError):
    """A status change would move a record backwards or out of a terminal state."""


class GatewayError(MenuhubError):
    """Credentials are missing/invalid or the payment provider rejected the request."""

    DEFAULT_MESSAGE = "Payment could not be processed. Please try again."

    def __init__(self, message=None):
        super().__init__(message or self.DEFAULT_MESSAGE)


class VerificationPendingError(MenuhubError):
    """The provider has not reported a final outcome yet."""

    DEFAULT_MESSAGE = "Payment is still pending. Please try again in a few minutes."

    def __init__(self, message=None):
        super().__init__(message or self.DEFAULT_MESSAGE)


class NetworkError(MenuhubError):
    """The backend or a server function could not be reached."""


class NotFoundError(MenuhubError):
    pass


class OwnershipError(MenuhubError):
    """The authenticated owner does not own the record."""

class SwitchboardError(Exception):
    """Base exception for chat core errors."""

    pass


class NotAuthenticated(SwitchboardError):
    """Raised when no bearer token is available for the session."""

    pass


class HubConnectionError(SwitchboardError, ConnectionError):
    """Raised when the hub or the API cannot be reached."""

    pass


class HubInvocationError(SwitchboardError):
    """Raised when the hub completes an invocation with an error."""

    pass


class NotFoundError(SwitchboardError):
    """Raised when a channel, message, or member cannot be found."""

    pass


class ValidationError(SwitchboardError, ValueError):
    """Raised when input is rejected before any network call."""

    pass


class ApiError(SwitchboardError):
    """Raised on a non-success API response."""

    def __init__(self, status: int, reason: str):
        super().__init__(f"API error {status}: {reason}")
        self.status = status
        self.reason = reason

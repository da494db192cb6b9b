"""
Domain errors raised by the booking and trip services.
main.py maps each to an HTTP status.
"""


class RouteWiseError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ConfigurationError(RouteWiseError):
    """Price rule missing or seat capacity misconfigured."""
    status_code = 422


class CapacityExceededError(RouteWiseError):
    """Every vehicle for the route and date is full."""
    status_code = 409


class ConcurrencyConflict(RouteWiseError):
    """A transaction lost a race. Retried by the store."""
    status_code = 409


class ExternalServiceError(RouteWiseError):
    """Email or payment gateway call failed."""
    status_code = 502


class ValidationError(RouteWiseError):
    status_code = 400


class NotFoundError(RouteWiseError):
    status_code = 404

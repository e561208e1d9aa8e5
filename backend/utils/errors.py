"""
Domain errors raised by services and dependencies.
main.py renders every ServiceError through error_response().
"""


class ServiceError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str = "An error occurred", data: dict = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}


class Unauthenticated(ServiceError):
    status_code = 401
    error_code = "unauthenticated"

    def __init__(self, message: str = "Authentication required", data: dict = None):
        super().__init__(message, data)


class QuotaExceeded(ServiceError):
    status_code = 429
    error_code = "quota_exceeded"

    def __init__(self, message: str = "Daily query limit exceeded. Please upgrade to continue.", data: dict = None):
        super().__init__(message, data)


class CollaboratorUnavailable(ServiceError):
    """Persistence or billing collaborator call failed."""
    status_code = 503
    error_code = "collaborator_unavailable"


class InvalidSignature(ServiceError):
    status_code = 400
    error_code = "invalid_signature"


class MalformedEvent(ServiceError):
    status_code = 400
    error_code = "malformed_event"


class UnknownSubscriptionReference(ServiceError):
    """
    Event points at a subscription we have no row for.
    Handled inside the reconciler: logged and acknowledged.
    """
    status_code = 200
    error_code = "unknown_subscription"


class ConfigurationError(ServiceError):
    status_code = 500
    error_code = "not_configured"

class ServiceError(Exception):
    """Base for every failure surfaced to callers of the session and repositories."""

    code = "service_error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ServiceError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class InvalidCredentials(ServiceError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials"


class EmailNotVerified(ServiceError):
    code = "email_not_verified"
    status_code = 403
    default_message = "Please verify your email before logging in."


class NotAuthenticated(ServiceError):
    code = "not_authenticated"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(ServiceError):
    code = "forbidden"
    status_code = 403
    default_message = "Not allowed"


class NotFoundOrForbidden(ServiceError):
    # Rendered exactly like a missing record so other users' data stays invisible.
    code = "not_found"
    status_code = 404
    default_message = "Incident not found"


class UpstreamUnavailable(ServiceError):
    code = "upstream_unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable"

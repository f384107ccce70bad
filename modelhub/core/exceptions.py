class ServiceError(Exception):
    """Generic service-layer error to avoid leaking provider details."""
    status_code = 500

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(ServiceError):
    """Missing or malformed input."""
    status_code = 400


class DuplicateNameError(ValidationError):
    """A name that must be unique for its owner is already taken."""


class NotFoundError(ServiceError):
    status_code = 404


class AccessDeniedError(ServiceError):
    """Ownership, visibility or role violation."""
    status_code = 403


class AuthError(ServiceError):
    """Bad, missing or expired credentials."""
    status_code = 401


class NoModelError(ServiceError):
    """A runtime operation was requested before a model was loaded.

    Reported as a client error: the caller must initialize or load the model first.
    """
    status_code = 400

    def __init__(self, message: str = "No model available. Create or load a model first.", **kw):
        super().__init__(message, **kw)

"""Exception types raised by kflow services."""


class KflowError(Exception):
    """Base class for all kflow errors."""

    pass


class AuthError(KflowError):
    """Raised when the identity provider rejects a login or refresh, or no session exists."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        """Initialize the auth error.

        Args:
            message: Human readable message (never contains credentials)
            error_code: OAuth2 ``error`` value reported by the provider
            status_code: HTTP status returned by the token endpoint
            endpoint: Token endpoint that was called
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.endpoint = endpoint


class ApiError(KflowError):
    """Raised when the cluster API answers with a non-2xx status."""

    def __init__(
        self,
        status: int,
        body: str,
        method: str | None = None,
        path: str | None = None,
    ) -> None:
        self.status = status
        self.body = body
        self.method = method
        self.path = path
        target = f" {method} {path}" if method and path else ""
        super().__init__(f"Kubernetes API error {status}{target}: {body}")


class NotFoundError(KflowError):
    """Raised when a job has no pods to read logs from."""

    pass


class ValidationError(KflowError):
    """Raised when a request cannot be run as given.

    Covers a missing or ineligible source file, an unreadable template file, and
    restarting before anything was submitted.
    """

    pass


class ConfigError(KflowError):
    """Raised when configuration values are malformed or missing."""

    pass


class ArtifactError(KflowError, OSError):
    """Raised when a code archive cannot be created."""

    pass

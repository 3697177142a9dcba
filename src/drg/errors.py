"""drg error types."""

from __future__ import annotations


class DrogueError(RuntimeError):
    """Base drg error.

    Only :class:`ServiceError` carries an HTTP status; every other error
    reports ``status_code`` as ``None``.
    """

    status_code: int | None = None


class InvalidInputError(DrogueError):
    """User supplied data or arguments are malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"The operation was not completed because `{message}`")
        self.reason = message


class NotFoundError(DrogueError):
    """Remote or local resource does not exist."""

    default_message = "The application or device was not found"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ServiceError(DrogueError):
    """Remote service rejected the request."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnexpectedClientError(DrogueError):
    """Transport or library failure not otherwise classified."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Unexpected error from the client library: {message}")


class ConfigIssueError(DrogueError):
    """Local configuration file or URL is malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"There is an issue in drg configuration: {message}")


class ContextNotFoundError(NotFoundError):
    """Named context is missing from the context store."""

    def __init__(self, name: str | None = None) -> None:
        if name:
            super().__init__(f"Context not found: {name}")
        else:
            super().__init__("No active context. Use `drg login` or `drg config default-context`.")
        self.name = name


class ContextConflictError(InvalidInputError):
    """A context with the requested name already exists."""

    def __init__(self, name: str) -> None:
        super().__init__(f"a context named {name} already exists")
        self.name = name


class MissingApplicationError(NotFoundError):
    """Device targets an application that does not exist."""

    def __init__(self, application: str) -> None:
        super().__init__(f"Application {application} does not exist, cannot create device")
        self.application = application


class KeyMismatchError(ConfigIssueError):
    """CA private key does not belong to the trust anchor certificate."""

    def __init__(self) -> None:
        super().__init__("Invalid CA key: trust anchor and private key mismatch")

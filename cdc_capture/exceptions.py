"""Custom exception classes for change data capture."""

from __future__ import annotations

from typing import Optional


class CDCException(Exception):
    """Base exception for all capture-related errors."""
    pass


class InvalidConfigurationError(CDCException):
    """Exception raised when capture options or connection strings are invalid.

    Always raised synchronously while an orchestrator is being built and never
    retried.
    """

    def __init__(self, message: str, field: str = None, expected: str = None, **kwargs):
        if field and field not in message:
            message = f"{field}: {message}"
        if expected:
            message = f"{message} Expected format: {expected}"
        super().__init__(message)
        self.field = field
        self.expected = expected
        self.details = kwargs


class ConnectionLost(CDCException):
    """Exception raised when the database connection drops during capture.

    Recoverable: the owner may reconnect the orchestrator.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None, **kwargs):
        super().__init__(message)
        self.cause = cause
        self.details = kwargs
        if cause is not None:
            self.__cause__ = cause


class FatalCaptureError(CDCException):
    """Exception raised when capture fails in a way that cannot be recovered.

    The orchestrator is destroyed and the stream has to be redefined.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None, **kwargs):
        super().__init__(message)
        self.cause = cause
        self.details = kwargs
        if cause is not None:
            self.__cause__ = cause


class CaptureStateError(CDCException):
    """Exception raised when a lifecycle call is made in an invalid state."""

    def __init__(self, message: str, state: str = None, **kwargs):
        super().__init__(message)
        self.state = state
        self.details = kwargs

"""
Custom exceptions for the LogMiner CDC source.

Defines the hierarchy of source errors. Fatal errors terminate the
streaming job; recoverable ones are reported and the stream continues.
"""

from typing import Any, Dict, Optional


class CDCException(Exception):
    """
    Base exception for all CDC source errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            details: Additional error context
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for diagnostics."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(CDCException):
    """Raised when a configuration property has an invalid value."""


class DatabaseConnectionError(CDCException):
    """
    Database connection error (fatal).

    Raised when the connection cannot be opened or maintained.
    """

    def __init__(
        self,
        message: str = "Failed to connect to database",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, details=details)


class SessionStartError(CDCException):
    """
    LogMiner session start error (fatal).

    Raised when the mining session cannot start at the resolved position,
    for example because the position was already purged from the log.
    """


class SessionStoppedError(CDCException):
    """Raised when a stopped mining session is asked to start again."""


class SessionCancelledError(CDCException):
    """Raised to a fetch that was blocked while the session was stopped."""


class UnparsableStatementError(CDCException):
    """
    Redo statement parse error (recoverable).

    The offending statement is dropped and fetching continues.
    """

    def __init__(
        self,
        message: str,
        sql: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details.setdefault("sql", sql)
        super().__init__(message=message, details=details)
        self.sql = sql


class RestoreAfterStartError(CDCException):
    """Raised when an offset restore is attempted after the session started."""

    def __init__(
        self,
        message: str = "Offsets cannot be restored once the mining session has started",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, details=details)


class TeardownError(CDCException):
    """
    Teardown step error (non-fatal).

    Logged by the session manager; later teardown steps still run.
    """

    def __init__(self, step: str, cause: Exception):
        super().__init__(
            message=f"Teardown step '{step}' failed: {cause}",
            details={"step": step},
        )
        self.step = step
        self.cause = cause

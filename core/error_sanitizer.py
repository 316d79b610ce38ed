"""
Error message sanitizer for security.

Removes sensitive information (passwords, connect strings, credentials)
from error messages before they are logged or stored in the dead letter
queue.
"""

import re
from typing import Optional


class ErrorSanitizer:
    """Sanitize error messages to remove sensitive information."""

    # Patterns to detect and sanitize
    SENSITIVE_PATTERNS = [
        # Connection URLs with passwords
        (r"oracle(\+\w+)?://[^:/\s]+:([^@\s]+)@", r"oracle://***:***@"),
        # Oracle user/password@connect_identifier
        (r"\b[\w$#]+/[^@\s/]+@(?=[\w.\-]+[:/])", r"***/***@"),
        # Password in various formats
        (r"password['\"]?\s*[:=]\s*['\"]?([^'\";\s,}]+)", r"password=***"),
        (r"pwd['\"]?\s*[:=]\s*['\"]?([^'\";\s,}]+)", r"pwd=***"),
        (r"passwd['\"]?\s*[:=]\s*['\"]?([^'\";\s,}]+)", r"passwd=***"),
        (r"identified\s+by\s+(\"[^\"]*\"|\S+)", r"IDENTIFIED BY ***"),
        # Tokens and secrets
        (r"token['\"]?\s*[:=]\s*['\"]?([^'\";\s,}]+)", r"token=***"),
        (r"secret['\"]?\s*[:=]\s*['\"]?([^'\";\s,}]+)", r"secret=***"),
    ]

    # Exception types that have empty string representation
    EMPTY_ERROR_TYPES = {
        TimeoutError: "Operation timed out - database may be slow or overloaded",
    }

    # Oracle error code to user-friendly message mapping
    ERROR_MAPPINGS = {
        "ora-01017": "Database Authentication Failed",
        "ora-01031": "Insufficient Privileges for LogMiner",
        "ora-01013": "Operation Cancelled",
        "ora-01291": "Redo Log Missing for Requested SCN",
        "ora-01292": "No Log File Available for LogMiner Session",
        "ora-12514": "Database Service Not Found",
        "ora-12541": "Database Listener Unreachable",
        "ora-12170": "Database Connection Timeout",
        "ora-03113": "Database Connection Closed",
        "ora-03135": "Database Connection Lost",
        "dpy-6005": "Unable to Connect to Database",
        "dpy-4011": "Database Connection Closed",
        "connection refused": "Database Connection Refused",
        "connection reset": "Database Connection Reset",
    }

    @classmethod
    def _redact(cls, text: str) -> str:
        for pattern, replacement in cls.SENSITIVE_PATTERNS:
            text = re.sub(pattern, replacement, text, flags=re.IGNORECASE | re.DOTALL)
        return text

    @classmethod
    def sanitize_error_message(
        cls, error: Exception, context: Optional[str] = None
    ) -> str:
        """
        Sanitize error message for safe storage and display.

        Args:
            error: The exception object
            context: Optional context (e.g., "LogMiner")

        Returns:
            Sanitized, user-friendly error message
        """
        for error_type, friendly_msg in cls.EMPTY_ERROR_TYPES.items():
            if isinstance(error, error_type) and not str(error).strip():
                return f"{context}: {friendly_msg}" if context else friendly_msg

        original_str = str(error).strip()
        if not original_str:
            return f"{context}: Unknown error occurred" if context else "Unknown error occurred"

        error_msg = original_str.lower()
        for pattern, friendly_msg in cls.ERROR_MAPPINGS.items():
            if pattern in error_msg:
                return f"{context}: {friendly_msg}" if context else friendly_msg

        sanitized = cls._redact(original_str)

        # Truncate very long messages
        if len(sanitized) > 500:
            sanitized = sanitized[:497] + "..."

        return f"{context}: {sanitized}" if context else sanitized

    @classmethod
    def sanitize_for_logs(cls, error: Exception, include_details: bool = True) -> str:
        """
        Sanitize error message for logging.

        Logs keep the original error structure but hide credentials.
        """
        if not include_details:
            return cls.sanitize_error_message(error)
        return cls._redact(str(error))


# Convenience functions
def sanitize_error(error: Exception, context: Optional[str] = None) -> str:
    """Sanitize error message for safe display."""
    return ErrorSanitizer.sanitize_error_message(error, context)


def sanitize_for_log(error: Exception, include_details: bool = True) -> str:
    """Sanitize error message for logging."""
    return ErrorSanitizer.sanitize_for_logs(error, include_details)

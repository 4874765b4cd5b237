"""Custom exceptions for the scraper tracker.

Provides structured error handling with categorized exceptions
and standardized error response format. Detection components catch
these at their boundary and degrade; only startup validation and the
HTTP API let them escape.
"""

from typing import Optional, Dict, Any


class TrackerException(Exception):
    """Base exception for all tracker errors.

    Provides structured error response format with:
    - error_code: Machine-readable error identifier
    - message: Human-readable error description
    - details: Optional additional context
    """

    error_code: str = "TRACKER_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return structured error response dict."""
        response = {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


# ============ Validation Errors (4xx) ============


class ValidationError(TrackerException):
    """API input validation failed."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(TrackerException):
    """Missing or invalid admin token."""

    error_code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, hint: str = "Set X-Admin-Token header"):
        super().__init__("Unauthorized access", details={"hint": hint})


# ============ Lookup Errors ============


class ExternalLookupError(TrackerException):
    """Base class for external lookup failures (geolocation, DNS)."""

    error_code = "LOOKUP_ERROR"
    status_code = 502


class LookupFailedError(ExternalLookupError):
    """Geolocation provider answered with an error or unusable payload."""

    error_code = "LOOKUP_FAILED"

    def __init__(self, ip: str, reason: str):
        super().__init__(f"IP lookup failed for {ip}: {reason}", details={"ip": ip, "reason": reason})


class LookupTimeoutError(ExternalLookupError):
    """External lookup exceeded its hard timeout."""

    error_code = "LOOKUP_TIMEOUT"
    status_code = 504

    def __init__(self, target: str, timeout_seconds: float):
        super().__init__(
            f"Lookup timed out for {target} after {timeout_seconds}s",
            details={"target": target, "timeout_seconds": timeout_seconds},
        )


class DnsLookupError(ExternalLookupError):
    """Reverse or forward DNS resolution errored (distinct from an empty answer)."""

    error_code = "DNS_ERROR"

    def __init__(self, name: str, reason: str):
        super().__init__(f"DNS lookup failed for {name}: {reason}", details={"name": name, "reason": reason})


# ============ Configuration Errors ============


class RegistryError(TrackerException):
    """Signature registry failed startup validation."""

    error_code = "REGISTRY_ERROR"

    def __init__(self, company: str, reason: str):
        super().__init__(f"Invalid signature entry {company!r}: {reason}", details={"company": company})


class ConfigurationError(TrackerException):
    """Configuration issue."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, message: str):
        super().__init__(f"Configuration error for {setting}: {message}", details={"setting": setting})


# ============ Utility Functions ============


def error_response(exception: TrackerException) -> tuple:
    """Create Flask JSON response from exception.

    Returns:
        Tuple of (response_dict, status_code) ready for jsonify
    """
    return exception.to_dict(), exception.status_code

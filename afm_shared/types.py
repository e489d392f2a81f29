"""
Shared types, enums, and constants.
"""
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    AUTH_REQUIRED = "AUTH_REQUIRED"

    # Service availability
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Server / infrastructure
    DB_ERROR = "DB_ERROR"
    TIMEOUT = "TIMEOUT"
    SEARCH_FAILED = "SEARCH_FAILED"

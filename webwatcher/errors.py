"""Error taxonomy shared by the collaborator clients and the analyzers."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    FETCH_FAILED = "FETCH_FAILED"
    PARSE_FAILED = "PARSE_FAILED"
    LOOP_DETECTED = "LOOP_DETECTED"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    INVALID_INPUT = "INVALID_INPUT"


class WebWatcherError(Exception):
    code = ErrorCode.FETCH_FAILED

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail


class FetchFailed(WebWatcherError):
    """Network, DNS or TLS handshake failure on an outbound call."""
    code = ErrorCode.FETCH_FAILED


class ParseFailed(WebWatcherError):
    """Malformed HTML/JSON from a target or a collaborator."""
    code = ErrorCode.PARSE_FAILED


class StorageUnavailable(WebWatcherError):
    code = ErrorCode.STORAGE_UNAVAILABLE


class InvalidInput(WebWatcherError):
    """Caller supplied a malformed URL, domain or email. Fatal to the scan."""
    code = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

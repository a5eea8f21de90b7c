"""Error types and error codes for milestone-sync."""

from typing import Dict, Any, Optional


# Error code definitions
ERROR_CODES = {
    'NETWORK_ERROR': {
        'message': 'Record store could not be reached',
        'retryable': True,
    },
    'HTTP_ERROR': {
        'message': 'Record store returned an error response',
        'retryable': False,
    },
    'INVALID_RESPONSE': {
        'message': 'Record store returned an unexpected payload',
        'retryable': False,
    },
    'INVALID_REQUEST': {
        'message': 'Invalid submission payload',
        'retryable': False,
    },
    'INVALID_DATE': {
        'message': 'Unparseable date value',
        'retryable': False,
    },
    'CONCURRENCY_CONFLICT': {
        'message': 'Concurrent updates for the same milestone',
        'retryable': False,
    },
}


class MilestoneSyncError(Exception):
    """Base exception for milestone-sync."""
    pass


class NetworkError(MilestoneSyncError):
    """Fetch failure or non-2xx response from the record store."""

    def __init__(
        self,
        code: str = 'NETWORK_ERROR',
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if message is None:
            message = ERROR_CODES.get(code, {}).get('message', 'Record store error')
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        """Whether another attempt may succeed."""
        if self.status_code is not None:
            return self.status_code >= 500
        return ERROR_CODES.get(self.code, {}).get('retryable', False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the store's ``{error, details}`` shape."""
        details = dict(self.details)
        details['code'] = self.code
        if self.status_code is not None:
            details['status_code'] = self.status_code
        return {
            'error': self.message,
            'details': details
        }

    def __repr__(self) -> str:
        return f"NetworkError(code={self.code!r}, status_code={self.status_code!r}, message={self.message!r})"


class InvalidDateError(MilestoneSyncError, ValueError):
    """Raised when a due date or submission timestamp cannot be parsed."""

    def __init__(self, value: Any):
        super().__init__(f"Invalid date value: {value!r}")
        self.value = value

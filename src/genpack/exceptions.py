"""Custom exceptions for the genpack framework."""

from typing import List, Optional


class GenpackError(Exception):
    """Base exception for all genpack errors."""

    pass


class GenerationError(GenpackError):
    """Base exception for errors raised while producing a file set."""

    pass


class TransientNetworkError(GenerationError):
    """Exception raised for retryable transport failures (timeouts, resets, 429/5xx)."""

    def __init__(self, message: str, status_code: int = None):
        """
        Initialize network error.

        Args:
            message: Error message
            status_code: Optional HTTP status code
        """
        super().__init__(message)
        self.status_code = status_code


class GenerationServiceError(GenerationError):
    """Exception raised when the generation service rejects a request."""

    def __init__(self, message: str, status_code: int = None, response_data: dict = None):
        """
        Initialize service error.

        Args:
            message: Error message
            status_code: Optional HTTP status code
            response_data: Optional response payload from the provider
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class ParseFailureError(GenerationError):
    """Exception raised when no file-shaped content could be located in a response."""

    def __init__(self, message: str, raw_length: int = 0):
        super().__init__(message)
        self.raw_length = raw_length


class TruncatedOutputError(GenerationError):
    """Exception raised when a response was cut off mid-structure."""

    pass


class EmptyGenerationError(GenerationError):
    """Exception raised when validation rejects every candidate file."""

    def __init__(self, message: str, invalid_paths: Optional[List[str]] = None):
        super().__init__(message)
        self.invalid_paths = list(invalid_paths or [])


class PartialGenerationError(GenerationError):
    """Raised only on request: some planned files never arrived."""

    def __init__(self, message: str, missing_files: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_files = list(missing_files or [])


class SessionError(GenpackError):
    """Base exception for session lifecycle errors."""

    pass


class InvalidContinuationStateError(SessionError):
    """Exception raised when a caller passes an invalid or stale continuation state."""

    pass


class SessionCancelledError(SessionError):
    """Exception raised when a pending run is superseded or its host is torn down."""

    pass


class DuplicateReportError(SessionError):
    """Exception raised when a session tries to report its result twice."""

    pass


class ConfigurationError(GenpackError):
    """Exception raised for invalid configuration."""

    pass

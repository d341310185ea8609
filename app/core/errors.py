from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class PlateAnalysisError(Exception):
    """Base class for every error raised by the analysis pipeline."""


class ValidationError(PlateAnalysisError):
    """
    Bad input. Always raised before any provider call.
    `unsupported_type` distinguishes a rejected mime type from a bad payload.
    """
    def __init__(self, message: str, unsupported_type: bool = False):
        super().__init__(message)
        self.unsupported_type = unsupported_type


class ProviderError(PlateAnalysisError):
    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ProviderError):
    kind = ErrorKind.AUTHENTICATION


class RateLimitedError(ProviderError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, status_code: Optional[int] = 429, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class MalformedResponseError(ProviderError):
    kind = ErrorKind.MALFORMED


class TransportError(ProviderError):
    kind = ErrorKind.TRANSPORT


class UnknownProviderError(ProviderError):
    kind = ErrorKind.UNKNOWN


class EnhancementFailure(PlateAnalysisError):
    """Image crop/enhancement could not complete (decode or encode failed)."""

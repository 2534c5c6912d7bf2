"""Foundation layer: error taxonomy and configuration."""

from .config import (
    LoggingSettings,
    RetryHelperSettings,
    RetrySettings,
    clear_settings_cache,
    get_settings,
)
from .errors import (
    ErrorCode,
    InvalidConfiguration,
    MaxAttemptsExceeded,
    MaxTimeoutExceeded,
    NonRetriable,
    RetryCancelled,
    RetryException,
    RetryFailure,
    StopKind,
    TaggedError,
    classify_exception,
    error_tag,
)

__all__ = [
    # Config
    "LoggingSettings", "RetryHelperSettings", "RetrySettings", "clear_settings_cache", "get_settings",
    # Errors
    "ErrorCode", "TaggedError", "classify_exception", "error_tag",
    "RetryFailure", "StopKind",
    "RetryException", "MaxAttemptsExceeded", "MaxTimeoutExceeded", "NonRetriable",
    "RetryCancelled", "InvalidConfiguration",
]

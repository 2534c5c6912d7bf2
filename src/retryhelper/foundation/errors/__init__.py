"""Unified error handling for retryhelper.

- ErrorCode: Standard error codes used as default error tags
- TaggedError/error_tag: Structural classification of operation failures
- RetryFailure: Pydantic record of a terminal stop condition
- RetryException and subclasses: The raisable error taxonomy
"""

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
    # Classification
    "ErrorCode", "TaggedError", "classify_exception", "error_tag",
    # Failure records
    "RetryFailure", "StopKind",
    # Taxonomy
    "RetryException", "MaxAttemptsExceeded", "MaxTimeoutExceeded", "NonRetriable",
    "RetryCancelled", "InvalidConfiguration",
]

"""Retrying invoker for remote calls."""

from remotecas.retry.retrier import (
    BACKOFF_FACTOR,
    DEFAULT_RETRYABLE_CODES,
    CallContext,
    GrpcError,
    MetadataAttacher,
    RetryLimitExceededError,
    make_metadata_attacher,
    retry,
)

__all__ = [
    "BACKOFF_FACTOR",
    "DEFAULT_RETRYABLE_CODES",
    "CallContext",
    "GrpcError",
    "MetadataAttacher",
    "RetryLimitExceededError",
    "make_metadata_attacher",
    "retry",
]

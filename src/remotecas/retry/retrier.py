"""Bounded retry with exponential backoff for remote calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field

import grpc

from remotecas.protos.models import Status

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.6

DEFAULT_RETRYABLE_CODES = frozenset({grpc.StatusCode.UNAVAILABLE})


class GrpcError(RuntimeError):
    """A remote call failed with a status that is not retried."""

    def __init__(self, message: str, status: Status) -> None:
        self.status = status
        super().__init__(message)


class RetryLimitExceededError(GrpcError):
    """A remote call kept failing with a retryable status until the limit."""


@dataclass
class CallContext:
    """Per-attempt call state handed to the transport.

    A new one is created for every attempt; attachers fill in headers and
    deadlines before the call is made.
    """

    metadata: list[tuple[str, str]] = field(default_factory=list)
    timeout: float | None = None

    def add_metadata(self, key: str, value: str) -> None:
        self.metadata.append((key, value))


MetadataAttacher = Callable[[CallContext], None]
Invocation = Callable[[CallContext], Status]


def make_metadata_attacher(
    metadata: Mapping[str, str] | None = None, timeout: float | None = None
) -> MetadataAttacher:
    """Build an attacher that adds *metadata* headers and a per-attempt *timeout*."""
    headers = dict(metadata or {})

    def attach(context: CallContext) -> None:
        for key, value in headers.items():
            context.add_metadata(key, value)
        if timeout is not None:
            context.timeout = timeout

    return attach


def retry(
    invocation: Invocation,
    retry_limit: int,
    retry_delay_ms: int | float,
    metadata_attacher: MetadataAttacher | None = None,
    retryable_codes: Collection[grpc.StatusCode] = DEFAULT_RETRYABLE_CODES,
) -> None:
    """Run *invocation* until it succeeds, retrying transient failures.

    At most ``retry_limit + 1`` attempts are made. Before retry number ``n``
    (0-indexed) the calling thread sleeps ``retry_delay_ms * 1.6 ** n`` ms.
    A status outside *retryable_codes* raises :class:`GrpcError` at once;
    running out of attempts raises :class:`RetryLimitExceededError`.
    """
    attempt = 0
    while True:
        context = CallContext()
        if metadata_attacher is not None:
            metadata_attacher(context)
        status = invocation(context)
        if status.ok:
            return

        if status.code not in retryable_codes:
            raise GrpcError(
                f"Remote call failed with non-retryable gRPC error {status}",
                status,
            )

        if attempt >= retry_limit:
            raise RetryLimitExceededError(
                f"Retry limit exceeded. Last gRPC error was {status}", status
            )

        delay_ms = retry_delay_ms * BACKOFF_FACTOR**attempt
        logger.warning(
            "Attempt %d/%d failed with gRPC error %s. Retrying in %d ms...",
            attempt + 1,
            retry_limit + 1,
            status,
            delay_ms,
        )
        time.sleep(delay_ms / 1000.0)
        attempt += 1

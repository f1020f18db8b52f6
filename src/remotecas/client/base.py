"""Transport interface consumed by the CAS client."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Protocol, runtime_checkable

from remotecas.client.models import (
    CaptureFilesResponse,
    CaptureTreeResponse,
    ReadBlobResult,
    StageTreeResponse,
    UploadResult,
)
from remotecas.protos.models import Digest, Status
from remotecas.retry.retrier import CallContext


@runtime_checkable
class CASTransport(Protocol):
    """Remote operations of a CAS service and its local caching proxy.

    Every method makes exactly one remote call using the given per-attempt
    context and reports its outcome as a Status; the client decides whether
    to retry. Channel setup, authentication and wire encoding live behind
    this interface.
    """

    def write_blob(self, context: CallContext, digest: Digest, data: bytes) -> Status: ...

    def read_blob(self, context: CallContext, digest: Digest) -> tuple[Status, bytes]: ...

    def write_blob_chunks(
        self, context: CallContext, digest: Digest, chunks: Iterable[bytes]
    ) -> Status:
        """Stream a blob to the server, one write per chunk."""
        ...

    def read_blob_chunks(
        self, context: CallContext, digest: Digest, sink: Callable[[bytes], object]
    ) -> Status:
        """Stream a blob from the server, handing each chunk to *sink*."""
        ...

    def batch_update_blobs(
        self, context: CallContext, blobs: Sequence[tuple[Digest, bytes]]
    ) -> tuple[Status, list[UploadResult]]: ...

    def batch_read_blobs(
        self, context: CallContext, digests: Sequence[Digest]
    ) -> tuple[Status, list[ReadBlobResult]]: ...

    def find_missing_blobs(
        self, context: CallContext, digests: Sequence[Digest]
    ) -> tuple[Status, list[Digest]]: ...

    def stage_tree(
        self, context: CallContext, digest: Digest, path: str
    ) -> tuple[Status, StageTreeResponse]: ...

    def release_tree(self, context: CallContext, path: str) -> Status: ...

    def capture_files(
        self,
        context: CallContext,
        paths: Sequence[str],
        properties: Sequence[str],
        bypass_local_cache: bool,
    ) -> tuple[Status, CaptureFilesResponse]: ...

    def capture_tree(
        self,
        context: CallContext,
        paths: Sequence[str],
        properties: Sequence[str],
        bypass_local_cache: bool,
    ) -> tuple[Status, CaptureTreeResponse]: ...

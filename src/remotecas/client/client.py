"""CAS client: blob transfer, tree download and broker calls, all retried."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import grpc

from remotecas.client.base import CASTransport
from remotecas.client.models import (
    BlobSizeMismatchError,
    CaptureFilesResponse,
    CaptureTreeResponse,
    ReadBlobResult,
    UploadRequest,
    UploadResult,
)
from remotecas.config.models import RemoteCASConfig
from remotecas.hashing.generator import DigestGenerator
from remotecas.protos.codec import parse_directory, serialize_directory, serialize_tree
from remotecas.protos.models import Digest, Directory, FileNode, Status, Tree
from remotecas.retry.retrier import CallContext, GrpcError, make_metadata_attacher, retry

logger = logging.getLogger(__name__)

# Estimated encoded size of a batch request and of each entry in it
BATCH_REQUEST_OVERHEAD_BYTES = 256
BATCH_ENTRY_OVERHEAD_BYTES = 50


def _check_entry_name(name: str) -> None:
    """Reject Directory entry names that would escape their parent."""
    if not name or name in (".", "..") or "/" in name or "\0" in name:
        raise ValueError(f"Invalid directory entry name: {name!r}")


def _check_entries(directory: Directory) -> None:
    """Validate every entry name, and reject a name used by two entries."""
    seen: set[str] = set()
    for node in (*directory.files, *directory.symlinks, *directory.directories):
        _check_entry_name(node.name)
        if node.name in seen:
            raise ValueError(f"Duplicate directory entry name: {node.name!r}")
        seen.add(node.name)


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def make_batches(digests: Sequence[Digest], max_total_size_bytes: int) -> list[tuple[int, int]]:
    """Group size-sorted *digests* into ``[start, end)`` ranges for batch calls.

    Each range fits in one request of *max_total_size_bytes*. Batching stops
    at the first digest too large to fit a request on its own; it and every
    digest after it are left for streaming.
    """
    max_batch_size = (
        max_total_size_bytes
        - BATCH_REQUEST_OVERHEAD_BYTES
        - BATCH_ENTRY_OVERHEAD_BYTES * len(digests)
    )
    batches: list[tuple[int, int]] = []
    start = end = 0
    while end < len(digests):
        if digests[end].size_bytes > max_batch_size:
            break
        total = 0
        while end < len(digests) and total + digests[end].size_bytes <= max_batch_size:
            total += digests[end].size_bytes
            end += 1
        batches.append((start, end))
        start = end
    return batches


class CASClient:
    """Talks to a CAS service through a :class:`CASTransport`.

    Each public method is one logical remote operation; the underlying call
    is wrapped in :func:`remotecas.retry.retry` using the configured limit,
    delay and retryable codes.
    """

    def __init__(
        self,
        transport: CASTransport,
        config: RemoteCASConfig | None = None,
        generator: DigestGenerator | None = None,
    ) -> None:
        self.config = config or RemoteCASConfig()
        self._transport = transport
        self._generator = generator or DigestGenerator(
            self.config.hashing.digest_function,
            self.config.hashing.buffer_size_bytes,
        )
        self._attach_metadata = make_metadata_attacher(
            self.config.remote.metadata, self.config.remote.request_timeout
        )

    @property
    def generator(self) -> DigestGenerator:
        return self._generator

    def _retry(self, invocation) -> None:
        retry(
            invocation,
            self.config.retry.limit,
            self.config.retry.delay_ms,
            metadata_attacher=self._attach_metadata,
            retryable_codes=self.config.retry.status_codes(),
        )

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def upload_blob(self, data: bytes, digest: Digest | None = None) -> Digest:
        """Write *data* to CAS and return its digest."""
        if digest is None:
            digest = self._generator.hash(data)

        def _invoke(context: CallContext) -> Status:
            return self._transport.write_blob(context, digest, data)

        self._retry(_invoke)
        return digest

    def _stream_upload(self, digest: Digest, open_chunks: Callable[[], Iterator[bytes]]) -> None:
        """Stream the chunks produced by *open_chunks*, restarting it on every attempt."""

        def _invoke(context: CallContext) -> Status:
            sent = 0

            def _counted() -> Iterator[bytes]:
                nonlocal sent
                for chunk in open_chunks():
                    sent += len(chunk)
                    yield chunk

            status = self._transport.write_blob_chunks(context, digest, _counted())
            if status.ok and sent != digest.size_bytes:
                raise BlobSizeMismatchError(digest, sent)
            return status

        self._retry(_invoke)

    def upload_fd(self, fd: int, digest: Digest | None = None) -> Digest:
        """Stream the contents of the open file *fd* to CAS.

        The file is read from the start on every attempt, in chunks of
        ``remote.bytestream_chunk_size_bytes``.
        """
        if digest is None:
            digest = self._generator.hash_fd(fd)
        chunk_size = self.config.remote.bytestream_chunk_size_bytes

        def _chunks() -> Iterator[bytes]:
            os.lseek(fd, 0, os.SEEK_SET)
            while True:
                chunk = os.read(fd, chunk_size)
                if not chunk:
                    return
                yield chunk

        self._stream_upload(digest, _chunks)
        return digest

    def upload_file(self, path: str | Path, digest: Digest | None = None) -> Digest:
        logger.debug("Uploading %s", path)
        fd = os.open(path, os.O_RDONLY)
        try:
            return self.upload_fd(fd, digest)
        finally:
            os.close(fd)

    def _upload_streamed(self, request: UploadRequest) -> None:
        if request.path is not None:
            self.upload_file(request.path, request.digest)
            return
        data = request.data
        chunk_size = self.config.remote.bytestream_chunk_size_bytes

        def _chunks() -> Iterator[bytes]:
            for offset in range(0, len(data), chunk_size):
                yield data[offset : offset + chunk_size]

        self._stream_upload(request.digest, _chunks)

    def fetch_blob(self, digest: Digest) -> bytes:
        """Read the blob for *digest*, checking its size against the digest."""
        data = b""

        def _invoke(context: CallContext) -> Status:
            nonlocal data
            status, data = self._transport.read_blob(context, digest)
            return status

        self._retry(_invoke)
        if len(data) != digest.size_bytes:
            raise BlobSizeMismatchError(digest, len(data))
        return data

    def download_fd(self, fd: int, digest: Digest) -> None:
        """Stream the blob for *digest* into the open file *fd*.

        The file is truncated before every attempt so a retried download
        never leaves bytes from an earlier one behind.
        """

        def _invoke(context: CallContext) -> Status:
            os.lseek(fd, 0, os.SEEK_SET)
            os.ftruncate(fd, 0)
            received = 0

            def _write(chunk: bytes) -> None:
                nonlocal received
                _write_all(fd, chunk)
                received += len(chunk)

            status = self._transport.read_blob_chunks(context, digest, _write)
            if status.ok and received != digest.size_bytes:
                raise BlobSizeMismatchError(digest, received)
            return status

        self._retry(_invoke)

    def download_file(self, digest: Digest, path: str | Path, executable: bool = False) -> None:
        logger.debug("Downloading file with digest %s to %s", digest, path)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        try:
            self.download_fd(fd, digest)
        finally:
            os.close(fd)
        os.chmod(path, 0o755 if executable else 0o644)

    def find_missing_blobs(self, digests: Sequence[Digest]) -> list[Digest]:
        """Return the subset of *digests* the server does not have."""
        if not digests:
            return []
        missing: list[Digest] = []

        def _invoke(context: CallContext) -> Status:
            nonlocal missing
            status, missing = self._transport.find_missing_blobs(context, list(digests))
            return status

        self._retry(_invoke)
        return missing

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _batch_upload(self, requests: Sequence[UploadRequest]) -> list[UploadResult]:
        blobs = [(r.digest, r.read()) for r in requests]
        responses: list[UploadResult] = []

        def _invoke(context: CallContext) -> Status:
            nonlocal responses
            status, responses = self._transport.batch_update_blobs(context, blobs)
            return status

        self._retry(_invoke)
        return [r for r in responses if not r.status.ok]

    def upload_blobs(self, requests: Sequence[UploadRequest]) -> list[UploadResult]:
        """Upload every request and return the ones that failed.

        Small blobs share batch requests; blobs too large for a batch are
        streamed one at a time. A failed batch reports INTERNAL for each of
        its digests.
        """
        ordered = sorted(requests, key=lambda r: r.digest.size_bytes)
        batches = make_batches(
            [r.digest for r in ordered], self.config.remote.max_batch_total_size_bytes
        )
        failures: list[UploadResult] = []
        for start, end in batches:
            batch = ordered[start:end]
            try:
                failures.extend(self._batch_upload(batch))
            except (GrpcError, OSError) as e:
                logger.error("Batch upload failed: %s", e)
                status = Status(code=grpc.StatusCode.INTERNAL, message=str(e))
                failures.extend(UploadResult(digest=r.digest, status=status) for r in batch)

        batch_end = batches[-1][1] if batches else 0
        for request in ordered[batch_end:]:
            try:
                self._upload_streamed(request)
            except GrpcError as e:
                failures.append(UploadResult(digest=request.digest, status=e.status))
            except (OSError, BlobSizeMismatchError) as e:
                logger.error("Failed to upload blob: %s", e)
                status = Status(code=grpc.StatusCode.INTERNAL, message=str(e))
                failures.append(UploadResult(digest=request.digest, status=status))
        return failures

    def _batch_download(self, digests: Sequence[Digest]) -> list[ReadBlobResult]:
        responses: list[ReadBlobResult] = []

        def _invoke(context: CallContext) -> Status:
            nonlocal responses
            status, responses = self._transport.batch_read_blobs(context, list(digests))
            return status

        self._retry(_invoke)
        return responses

    def download_blobs(self, digests: Sequence[Digest]) -> dict[Digest, tuple[Status, bytes]]:
        """Fetch every digest, batching small blobs.

        Every requested digest gets an entry; failed ones carry their status
        and empty data.
        """
        ordered = sorted(dict.fromkeys(digests), key=lambda d: d.size_bytes)
        batches = make_batches(ordered, self.config.remote.max_batch_total_size_bytes)
        results: dict[Digest, tuple[Status, bytes]] = {}
        for start, end in batches:
            batch = ordered[start:end]
            try:
                for response in self._batch_download(batch):
                    results[response.digest] = (response.status, response.data)
            except GrpcError as e:
                logger.error("Batch download failed: %s", e)
                status = Status(code=grpc.StatusCode.INTERNAL, message=str(e))
                results.update((d, (status, b"")) for d in batch)
            for digest in batch:
                if digest not in results:
                    status = Status(code=grpc.StatusCode.INTERNAL, message="no data returned")
                    results[digest] = (status, b"")

        batch_end = batches[-1][1] if batches else 0
        for digest in ordered[batch_end:]:
            try:
                results[digest] = (Status(), self.fetch_blob(digest))
            except GrpcError as e:
                results[digest] = (e.status, b"")
        return results

    # ------------------------------------------------------------------
    # Messages and trees
    # ------------------------------------------------------------------

    def upload_message(self, message: Directory | Tree) -> Digest:
        if isinstance(message, Tree):
            data = serialize_tree(message)
        else:
            data = serialize_directory(message)
        return self.upload_blob(data)

    def fetch_directory(self, digest: Digest) -> Directory:
        return parse_directory(self.fetch_blob(digest))

    def fetch_tree(self, root_digest: Digest) -> Tree:
        """Fetch every Directory reachable from *root_digest*.

        Children are listed breadth-first, each distinct digest once.
        """
        root = self.fetch_directory(root_digest)
        seen = {root_digest}
        children: list[Directory] = []
        pending = [d.digest for d in root.directories]
        while pending:
            digest = pending.pop(0)
            if digest in seen:
                continue
            seen.add(digest)
            directory = self.fetch_directory(digest)
            children.append(directory)
            pending.extend(d.digest for d in directory.directories)
        return Tree(root=root, children=tuple(children))

    def _download_files(self, files: Sequence[FileNode], path: str) -> None:
        """Write *files* into *path*, fetching their contents with batch reads."""
        if not files:
            return
        contents = self.download_blobs([f.digest for f in files])
        for f in files:
            status, data = contents[f.digest]
            if not status.ok:
                raise GrpcError(f"Failed to download {f.name} ({f.digest}): {status}", status)
            if len(data) != f.digest.size_bytes:
                raise BlobSizeMismatchError(f.digest, len(data))
            target = os.path.join(path, f.name)
            mode = 0o755 if f.is_executable else 0o644
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            try:
                _write_all(fd, data)
            finally:
                os.close(fd)
            os.chmod(target, mode)

    def download_directory(self, digest: Digest, path: str | Path) -> None:
        """Materialize the tree rooted at *digest* under *path*.

        *path* may already exist; everything below it is created fresh.
        """
        logger.debug("Downloading directory with digest %s to %s", digest, path)
        os.makedirs(path, exist_ok=True)
        self._download_into(digest, os.fspath(path))

    def _download_into(self, digest: Digest, path: str) -> None:
        directory = self.fetch_directory(digest)
        _check_entries(directory)
        self._download_files(directory.files, path)
        for s in directory.symlinks:
            os.symlink(s.target, os.path.join(path, s.name))
        for d in directory.directories:
            subdirectory = os.path.join(path, d.name)
            os.mkdir(subdirectory)
            self._download_into(d.digest, subdirectory)

    # ------------------------------------------------------------------
    # Local caching proxy
    # ------------------------------------------------------------------

    def stage_tree(self, digest: Digest, path: str | Path) -> str:
        """Ask the proxy to stage *digest* under *path*; return the staged path."""
        staged_path = ""

        def _invoke(context: CallContext) -> Status:
            nonlocal staged_path
            status, response = self._transport.stage_tree(context, digest, str(path))
            staged_path = response.path
            return status

        self._retry(_invoke)
        return staged_path

    def release_tree(self, path: str) -> None:
        def _invoke(context: CallContext) -> Status:
            return self._transport.release_tree(context, path)

        self._retry(_invoke)

    def capture_files(
        self,
        paths: Sequence[str],
        properties: Sequence[str] = (),
        bypass_local_cache: bool = False,
    ) -> CaptureFilesResponse:
        response = CaptureFilesResponse()

        def _invoke(context: CallContext) -> Status:
            nonlocal response
            status, response = self._transport.capture_files(
                context, list(paths), list(properties), bypass_local_cache
            )
            return status

        self._retry(_invoke)
        return response

    def capture_tree(
        self,
        paths: Sequence[str],
        properties: Sequence[str] = (),
        bypass_local_cache: bool = False,
    ) -> CaptureTreeResponse:
        response = CaptureTreeResponse()

        def _invoke(context: CallContext) -> Status:
            nonlocal response
            status, response = self._transport.capture_tree(
                context, list(paths), list(properties), bypass_local_cache
            )
            return status

        self._retry(_invoke)
        return response

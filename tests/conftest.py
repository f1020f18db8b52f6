"""Shared test fixtures for remotecas."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections import defaultdict

import grpc
import pytest

from remotecas.client import (
    CASClient,
    CapturedFile,
    CapturedTree,
    CaptureFilesResponse,
    CaptureTreeResponse,
    ReadBlobResult,
    StageTreeResponse,
    UploadResult,
)
from remotecas.config.models import RemoteCASConfig, RetryConfig, StagingConfig
from remotecas.hashing import DigestGenerator
from remotecas.merkle.nested import File, NestedDirectory, make_nested_directory
from remotecas.protos import Digest, Status, parse_directory, serialize_directory, serialize_tree
from remotecas.retry import retrier

OK = Status()


class InMemoryTransport:
    """CAS service and caching proxy kept in a dict, for tests only.

    ``fail_next[method]`` holds statuses returned (in order) before the
    method starts succeeding; ``calls`` records every method invoked.
    ``batch_statuses`` sets per-digest outcomes of batch uploads, and
    ``read_chunk_size`` how streamed reads are split.
    """

    def __init__(self) -> None:
        self.generator = DigestGenerator()
        self.blobs: dict[Digest, bytes] = {}
        self.calls: list[str] = []
        self.contexts: list = []
        self.fail_next: dict[str, list[Status]] = defaultdict(list)
        self.capture_files_override: CaptureFilesResponse | None = None
        self.capture_tree_override: CaptureTreeResponse | None = None
        self.released: list[str] = []
        self.read_chunk_size = 4
        self.chunks_written: list[list[int]] = []
        self.batch_sizes: list[int] = []
        self.batch_statuses: dict[Digest, Status] = {}

    def _record(self, method: str, context) -> Status | None:
        self.calls.append(method)
        self.contexts.append(context)
        if self.fail_next[method]:
            return self.fail_next[method].pop(0)
        return None

    # CAS -------------------------------------------------------------

    def write_blob(self, context, digest, data):
        failure = self._record("write_blob", context)
        if failure:
            return failure
        self.blobs[digest] = data
        return OK

    def read_blob(self, context, digest):
        failure = self._record("read_blob", context)
        if failure:
            return failure, b""
        if digest not in self.blobs:
            return Status(code=grpc.StatusCode.NOT_FOUND, message=f"{digest} not found"), b""
        return OK, self.blobs[digest]

    def write_blob_chunks(self, context, digest, chunks):
        failure = self._record("write_blob_chunks", context)
        if failure:
            return failure
        received = list(chunks)
        self.chunks_written.append([len(c) for c in received])
        self.blobs[digest] = b"".join(received)
        return OK

    def read_blob_chunks(self, context, digest, sink):
        failure = self._record("read_blob_chunks", context)
        if failure:
            return failure
        if digest not in self.blobs:
            return Status(code=grpc.StatusCode.NOT_FOUND, message=f"{digest} not found")
        data = self.blobs[digest]
        for offset in range(0, len(data), self.read_chunk_size):
            sink(data[offset : offset + self.read_chunk_size])
        return OK

    def batch_update_blobs(self, context, blobs):
        failure = self._record("batch_update_blobs", context)
        if failure:
            return failure, []
        self.batch_sizes.append(len(blobs))
        responses = []
        for digest, data in blobs:
            status = self.batch_statuses.get(digest, OK)
            if status.ok:
                self.blobs[digest] = data
            responses.append(UploadResult(digest=digest, status=status))
        return OK, responses

    def batch_read_blobs(self, context, digests):
        failure = self._record("batch_read_blobs", context)
        if failure:
            return failure, []
        self.batch_sizes.append(len(digests))
        responses = []
        for digest in digests:
            if digest in self.blobs:
                responses.append(ReadBlobResult(digest=digest, data=self.blobs[digest]))
            else:
                missing = Status(code=grpc.StatusCode.NOT_FOUND, message=f"{digest} not found")
                responses.append(ReadBlobResult(digest=digest, status=missing))
        return OK, responses

    def find_missing_blobs(self, context, digests):
        failure = self._record("find_missing_blobs", context)
        if failure:
            return failure, []
        return OK, [d for d in digests if d not in self.blobs]

    # Proxy -----------------------------------------------------------

    def _materialize(self, digest: Digest, path: str) -> None:
        directory = parse_directory(self.blobs[digest])
        os.makedirs(path, exist_ok=True)
        for f in directory.files:
            target = os.path.join(path, f.name)
            with open(target, "wb") as fh:
                fh.write(self.blobs[f.digest])
            os.chmod(target, 0o755 if f.is_executable else 0o644)
        for s in directory.symlinks:
            os.symlink(s.target, os.path.join(path, s.name))
        for d in directory.directories:
            self._materialize(d.digest, os.path.join(path, d.name))

    def stage_tree(self, context, digest, path):
        failure = self._record("stage_tree", context)
        if failure:
            return failure, StageTreeResponse(path="")
        staged = tempfile.mkdtemp(prefix="proxy-", dir=path or None)
        self._materialize(digest, staged)
        return OK, StageTreeResponse(path=staged)

    def release_tree(self, context, path):
        failure = self._record("release_tree", context)
        if failure:
            return failure
        self.released.append(path)
        shutil.rmtree(path, ignore_errors=True)
        return OK

    def capture_files(self, context, paths, properties, bypass_local_cache):
        failure = self._record("capture_files", context)
        if failure:
            return failure, CaptureFilesResponse()
        if self.capture_files_override is not None:
            return OK, self.capture_files_override
        responses = []
        for p in paths:
            with open(p, "rb") as fh:
                data = fh.read()
            digest = self.generator.hash(data)
            self.blobs[digest] = data
            responses.append(CapturedFile(path=p, digest=digest))
        return OK, CaptureFilesResponse(responses=responses)

    def capture_tree(self, context, paths, properties, bypass_local_cache):
        failure = self._record("capture_tree", context)
        if failure:
            return failure, CaptureTreeResponse()
        if self.capture_tree_override is not None:
            return OK, self.capture_tree_override
        responses = []
        for p in paths:
            file_map: dict[Digest, str] = {}
            tree = make_nested_directory(p, self.generator, file_map).to_tree(self.generator)
            for digest, source in file_map.items():
                with open(source, "rb") as fh:
                    self.blobs[digest] = fh.read()
            tree_data = serialize_tree(tree)
            tree_digest = self.generator.hash(tree_data)
            self.blobs[tree_digest] = tree_data
            responses.append(CapturedTree(path=p, tree_digest=tree_digest))
        return OK, CaptureTreeResponse(responses=responses)


def store_tree(
    transport: InMemoryTransport,
    files: dict[str, bytes],
    executables: frozenset[str] = frozenset(),
    symlinks: dict[str, str] | None = None,
    empty_dirs: tuple[str, ...] = (),
) -> Digest:
    """Put file blobs and Directory records into *transport*; return the root digest."""
    nested = NestedDirectory()
    for path, data in files.items():
        digest = transport.generator.hash(data)
        transport.blobs[digest] = data
        nested.add(File(digest=digest, is_executable=path in executables), path)
    for path, target in (symlinks or {}).items():
        nested.add_symlink(target, path)
    for path in empty_dirs:
        nested.add_directory(path)
    digest_map: dict[Digest, bytes] = {}
    root = nested.to_digest(transport.generator, digest_map)
    transport.blobs.update(digest_map)
    return root


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def store(transport):
    """``store(files, ...)`` puts a tree into the in-memory CAS and returns its root digest."""

    def _store(files, **kwargs) -> Digest:
        return store_tree(transport, files, **kwargs)

    return _store


@pytest.fixture
def config(tmp_path) -> RemoteCASConfig:
    return RemoteCASConfig(
        retry=RetryConfig(limit=2, delay_ms=1),
        staging=StagingConfig(root=str(tmp_path / "stage")),
    )


@pytest.fixture
def client(transport, config, tmp_path) -> CASClient:
    (tmp_path / "stage").mkdir(exist_ok=True)
    return CASClient(transport, config)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record backoff sleeps instead of sleeping."""
    sleeps: list[float] = []
    monkeypatch.setattr(retrier.time, "sleep", sleeps.append)
    return sleeps


@pytest.fixture
def sample_directory_bytes():
    """Serialized single-file Directory, handy for codec checks."""
    nested = NestedDirectory()
    nested.add(File(digest=DigestGenerator().hash(b"hello")), "hello.txt")
    return serialize_directory(nested.to_directory())

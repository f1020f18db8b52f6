"""Digest generation for blobs held in memory, on disk, or streamed."""

from __future__ import annotations

import hashlib
import os
from enum import Enum
from pathlib import Path

from remotecas.protos.models import Digest

# Bytes read per chunk when hashing a file descriptor.
HASH_BUFFER_SIZE_BYTES = 1024 * 1024


class HashingError(RuntimeError):
    """A call into the hash backend failed."""


class DigestFunction(str, Enum):
    """Hash functions a DigestGenerator can be built with."""

    MD5 = "md5"
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"


_SUPPORTED_DIGEST_FUNCTIONS = frozenset(DigestFunction)


class DigestContext:
    """Incremental hashing state for one blob.

    Feed it with :meth:`update` and call :meth:`finalize_digest` once.
    Usable as a context manager so the hasher is dropped when the scope ends.
    """

    def __init__(self, digest_function: DigestFunction) -> None:
        try:
            self._hasher = hashlib.new(digest_function.value)
        except (ValueError, TypeError) as e:
            raise HashingError(f"hashlib.new() failed: {e}") from e
        self._size = 0
        self._finalized = False

    def __enter__(self) -> DigestContext:
        return self

    def __exit__(self, *exc_info) -> None:
        self._finalized = True
        self._hasher = None

    def update(self, data: bytes | bytearray | memoryview, length: int | None = None) -> None:
        """Hash the first *length* bytes of *data* (all of it by default)."""
        if self._finalized:
            raise HashingError("Cannot update finalized digest")
        view = memoryview(data)
        if length is not None:
            view = view[:length]
        try:
            self._hasher.update(view)
        except (TypeError, ValueError) as e:
            raise HashingError(f"update() failed: {e}") from e
        self._size += view.nbytes

    def finalize_digest(self) -> Digest:
        if self._finalized:
            raise HashingError("Digest already finalized")
        try:
            hex_hash = self._hasher.hexdigest()
        except (TypeError, ValueError) as e:
            raise HashingError(f"hexdigest() failed: {e}") from e
        self._finalized = True
        return Digest(hash=hex_hash, size_bytes=self._size)


class DigestGenerator:
    """Builds Digests with one configured hash function.

    The function is fixed at construction; there is no process-wide default
    beyond the SHA-256 argument default.
    """

    def __init__(
        self,
        digest_function: DigestFunction | str = DigestFunction.SHA256,
        buffer_size: int = HASH_BUFFER_SIZE_BYTES,
    ) -> None:
        try:
            function = DigestFunction(digest_function)
        except ValueError as e:
            raise HashingError(
                f"Digest function value not supported: {digest_function!r}"
            ) from e
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self._digest_function = function
        self._buffer_size = buffer_size

    @property
    def digest_function(self) -> DigestFunction:
        return self._digest_function

    @staticmethod
    def supported_digest_functions() -> frozenset[DigestFunction]:
        return _SUPPORTED_DIGEST_FUNCTIONS

    def create_digest_context(self) -> DigestContext:
        return DigestContext(self._digest_function)

    def hash(self, data: bytes) -> Digest:
        """Digest of an in-memory buffer."""
        with self.create_digest_context() as ctx:
            ctx.update(data)
            return ctx.finalize_digest()

    def hash_fd(self, fd: int) -> Digest:
        """Digest of everything readable from *fd*, starting at offset 0.

        Moves the descriptor's offset as a side effect.
        """
        with self.create_digest_context() as ctx:
            os.lseek(fd, 0, os.SEEK_SET)
            while True:
                chunk = os.read(fd, self._buffer_size)
                if not chunk:
                    break
                ctx.update(chunk)
            return ctx.finalize_digest()

    def hash_file(self, path: str | Path) -> Digest:
        fd = os.open(path, os.O_RDONLY)
        try:
            return self.hash_fd(fd)
        finally:
            os.close(fd)


def make_digest(
    blob: bytes, digest_function: DigestFunction | str = DigestFunction.SHA256
) -> Digest:
    """Shorthand for ``DigestGenerator(digest_function).hash(blob)``."""
    return DigestGenerator(digest_function).hash(blob)

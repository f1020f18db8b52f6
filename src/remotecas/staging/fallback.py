"""Staged directory built from plain CAS blob reads and writes."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from collections.abc import Sequence

from remotecas.client.client import CASClient
from remotecas.client.models import UploadRequest
from remotecas.merkle.nested import capture_node_properties, make_nested_directory
from remotecas.protos.codec import serialize_directory, serialize_tree
from remotecas.protos.models import Digest, OutputDirectory, OutputFile
from remotecas.retry.retrier import GrpcError
from remotecas.staging.base import StagedDirectory

logger = logging.getLogger(__name__)


class FallbackStagedDirectory(StagedDirectory):
    """Downloads the whole tree into a private temporary directory.

    Needs nothing from the server beyond blob reads, writes and
    find-missing queries. Capture hashes locally and uploads only the blobs
    the server reports as missing.
    """

    def __init__(
        self,
        digest: Digest,
        client: CASClient,
        root: str | None = None,
        prefix: str = "remotecas-run",
    ) -> None:
        super().__init__()
        self._client = client
        self._path = tempfile.mkdtemp(prefix=prefix, dir=root)
        logger.debug("Downloading to %s", self._path)
        try:
            self._client.download_directory(digest, self._path)
        except Exception as e:
            logger.debug("Could not download directory with digest %s to %s: %s", digest, self._path, e)
            self._released = True
            shutil.rmtree(self._path, ignore_errors=True)
            raise
        self._on_release(shutil.rmtree, self._path)

    def _upload_missing(self, blobs: dict[Digest, str | bytes]) -> None:
        """Upload each blob (file path or bytes) the server does not have yet."""
        requests = []
        for digest in self._client.find_missing_blobs(list(blobs)):
            source = blobs[digest]
            if isinstance(source, bytes):
                requests.append(UploadRequest(digest=digest, data=source))
            else:
                requests.append(UploadRequest(digest=digest, path=source))
        failures = self._client.upload_blobs(requests)
        if failures:
            first = failures[0]
            raise GrpcError(
                f"Failed to upload {len(failures)} blob(s), first {first.digest}: {first.status}",
                first.status,
            )

    def capture_file(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputFile | None:
        absolute_path = self.absolute_path(relative_path)
        logger.debug("Uploading %s", relative_path)
        try:
            fd = os.open(absolute_path, os.O_RDONLY)
        except (FileNotFoundError, PermissionError, NotADirectoryError):
            return None
        try:
            st = os.fstat(fd)
            if not stat.S_ISREG(st.st_mode):
                return None
            digest = self._client.generator.hash_fd(fd)
        finally:
            os.close(fd)

        self._upload_missing({digest: absolute_path})
        return OutputFile(
            path=relative_path,
            digest=digest,
            is_executable=bool(st.st_mode & stat.S_IXUSR),
            node_properties=capture_node_properties(absolute_path, tuple(properties)),
        )

    def capture_directory(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputDirectory | None:
        absolute_path = self.absolute_path(relative_path)
        if not os.path.isdir(absolute_path):
            return None

        logger.debug("Uploading directory %s", relative_path)
        generator = self._client.generator
        file_map: dict[Digest, str] = {}
        nested = make_nested_directory(absolute_path, generator, file_map, tuple(properties))
        tree = nested.to_tree(generator)

        blobs: dict[Digest, str | bytes] = dict(file_map)
        for directory in tree.directories():
            data = serialize_directory(directory)
            blobs[generator.hash(data)] = data
        tree_data = serialize_tree(tree)
        tree_digest = generator.hash(tree_data)
        blobs[tree_digest] = tree_data

        self._upload_missing(blobs)
        return OutputDirectory(path=relative_path, tree_digest=tree_digest)

"""Staged directory delegated to a local caching proxy."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Sequence

from remotecas.client.client import CASClient
from remotecas.protos.models import Digest, OutputDirectory, OutputFile
from remotecas.staging.base import CaptureError, StagedDirectory

logger = logging.getLogger(__name__)


def _release_tree(client: CASClient, path: str) -> None:
    """Tell the proxy *path* is done, then remove whatever it left behind."""
    try:
        client.release_tree(path)
    finally:
        if os.path.lexists(path):
            shutil.rmtree(path)


class LocalCasStagedDirectory(StagedDirectory):
    """Asks the proxy to stage the tree and to hash/upload outputs.

    The proxy decides where (below *root*) the tree is staged and keeps its
    own cache, so staging and capture are one call each.
    """

    def __init__(self, digest: Digest, client: CASClient, root: str | None = None) -> None:
        super().__init__()
        self._client = client
        self._path = client.stage_tree(digest, root or "")
        logger.debug("Proxy staged %s at %s", digest, self._path)
        self._on_release(_release_tree, client, self._path)

    def capture_file(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputFile | None:
        absolute_path = self.absolute_path(relative_path)
        if not os.path.isfile(absolute_path) or os.path.islink(absolute_path):
            return None

        response = self._client.capture_files([absolute_path], properties)
        if not response.responses:
            raise CaptureError(
                f'Error capturing "{absolute_path}": server returned empty response'
            )
        captured = response.responses[0]
        if not captured.status.ok:
            raise CaptureError(f'Error capturing "{absolute_path}": {captured.status.message}')
        if captured.digest is None:
            raise CaptureError(f'Error capturing "{absolute_path}": server returned no digest')

        mode = os.stat(absolute_path).st_mode
        return OutputFile(
            path=relative_path,
            digest=captured.digest,
            is_executable=bool(mode & stat.S_IXUSR),
            node_properties=captured.node_properties,
        )

    def capture_directory(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputDirectory | None:
        absolute_path = self.absolute_path(relative_path)
        if not os.path.isdir(absolute_path) or os.path.islink(absolute_path):
            return None

        response = self._client.capture_tree([absolute_path], properties)
        if not response.responses:
            raise CaptureError(
                f'Error capturing "{absolute_path}": server returned empty response'
            )
        captured = response.responses[0]
        if not captured.status.ok:
            raise CaptureError(f'Error capturing "{absolute_path}": {captured.status.message}')
        if captured.tree_digest is None:
            raise CaptureError(
                f'Error capturing "{absolute_path}": server returned no tree digest'
            )

        return OutputDirectory(path=relative_path, tree_digest=captured.tree_digest)

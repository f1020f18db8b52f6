"""Abstract staged directory: a CAS tree materialized at a private local path."""

from __future__ import annotations

import logging
import os
import posixpath
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from remotecas.protos.models import ActionResult, Command, OutputDirectory, OutputFile
from remotecas.scopeguard import ScopeGuard

logger = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    """The capture service rejected or mangled a capture request."""


def _release_staged(path: str, release: Callable[..., object], *args) -> None:
    with ScopeGuard(lambda: release(*args)):
        logger.debug("Releasing staged directory %s", path)


class StagedDirectory(ABC):
    """One Merkle tree staged on local disk, owned by exactly one object.

    Subclasses stage the tree in their constructor, set ``_path`` and hand
    their cleanup to :meth:`_on_release`. :meth:`close` (or leaving a
    ``with`` block) releases the staged tree and its local path; an instance
    that is garbage collected without being closed is released then.
    Instances cannot be copied: two owners would both try to remove the
    same directory.
    """

    def __init__(self) -> None:
        self._path = ""
        self._released = False
        self._finalizer: weakref.finalize | None = None

    @property
    def path(self) -> str:
        """Local directory where the staged tree lives."""
        return self._path

    @property
    def released(self) -> bool:
        return self._released

    def __copy__(self):
        raise TypeError(f"{type(self).__name__} cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError(f"{type(self).__name__} cannot be copied")

    def __enter__(self) -> StagedDirectory:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release the staged tree. Later calls do nothing.

        Failures while releasing are logged, not raised.
        """
        if self._released:
            return
        self._released = True
        if self._finalizer is not None:
            self._finalizer()

    def _on_release(self, release: Callable[..., object], *args) -> None:
        """Register ``release(*args)`` to run once, at close or collection.

        *release* must not refer to this instance, or it would never be
        collected.
        """
        self._finalizer = weakref.finalize(self, _release_staged, self._path, release, *args)

    def absolute_path(self, relative_path: str) -> str:
        """Resolve *relative_path* against the staged root.

        Raises ValueError if the result would fall outside the root.
        """
        root = os.path.normpath(self._path)
        candidate = os.path.normpath(os.path.join(root, relative_path.lstrip("/")))
        if os.path.commonpath([root, candidate]) != root:
            raise ValueError(f"Path {relative_path!r} escapes staged directory {root}")
        return candidate

    @abstractmethod
    def capture_file(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputFile | None:
        """Upload the regular file at *relative_path* and describe it.

        Returns None when there is no regular file at that path.
        """

    @abstractmethod
    def capture_directory(
        self, relative_path: str, properties: Sequence[str] = ()
    ) -> OutputDirectory | None:
        """Upload the directory at *relative_path* as a Tree.

        Returns None when there is no directory at that path.
        """

    def capture_all_outputs(
        self, command: Command, result: ActionResult | None = None
    ) -> ActionResult:
        """Capture every declared output of *command* into *result*.

        Outputs are looked up relative to the command's working directory
        but recorded under the path they were declared with. Missing outputs
        are skipped.
        """
        if result is None:
            result = ActionResult()
        properties = command.output_node_properties

        for name in command.output_files:
            path = posixpath.join(command.working_directory, name)
            output_file = self.capture_file(path, properties)
            if output_file is not None:
                result.output_files.append(output_file.model_copy(update={"path": name}))

        for name in command.output_directories:
            path = posixpath.join(command.working_directory, name)
            output_directory = self.capture_directory(path, properties)
            if output_directory is not None:
                result.output_directories.append(
                    output_directory.model_copy(update={"path": name})
                )

        return result

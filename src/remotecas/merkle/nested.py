"""In-memory directory trees that serialize into Merkle Directory records."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from remotecas.hashing.generator import DigestGenerator
from remotecas.protos.codec import serialize_directory
from remotecas.protos.models import (
    Digest,
    Directory,
    DirectoryNode,
    FileNode,
    NodeProperty,
    SymlinkNode,
    Tree,
)

logger = logging.getLogger(__name__)

MTIME_PROPERTY = "MTime"
UNIX_MODE_PROPERTY = "UnixMode"


def capture_node_properties(path: str | Path, names: list[str] | tuple[str, ...]) -> tuple[NodeProperty, ...]:
    """Read the requested node properties of the file at *path*.

    Supports ``MTime`` (RFC 3339, UTC) and ``UnixMode`` (octal permission
    bits); other names are skipped.
    """
    if not names:
        return ()
    st = os.stat(path)
    props: list[NodeProperty] = []
    for name in names:
        if name == MTIME_PROPERTY:
            mtime = datetime.fromtimestamp(st.st_mtime, tz=UTC)
            props.append(NodeProperty(name=name, value=mtime.strftime("%Y-%m-%dT%H:%M:%S.%fZ")))
        elif name == UNIX_MODE_PROPERTY:
            props.append(NodeProperty(name=name, value=f"{stat.S_IMODE(st.st_mode):04o}"))
        else:
            logger.warning("Skipping unsupported node property %r for %s", name, path)
    return tuple(props)


@dataclass(frozen=True)
class File:
    """A file entry: its content digest plus metadata."""

    digest: Digest
    is_executable: bool = False
    node_properties: tuple[NodeProperty, ...] = ()

    def to_file_node(self, name: str) -> FileNode:
        return FileNode(
            name=name,
            digest=self.digest,
            is_executable=self.is_executable,
            node_properties=self.node_properties,
        )


def _split(relative_path: str) -> list[str]:
    parts = [p for p in relative_path.split("/") if p and p != "."]
    if not parts or ".." in parts:
        raise ValueError(f"Invalid relative path: {relative_path!r}")
    return parts


class NestedDirectory:
    """Mutable directory tree keyed by entry name.

    Entries are emitted sorted by name, so equal trees always produce equal
    Directory records and digests.
    """

    def __init__(self) -> None:
        self.subdirs: dict[str, NestedDirectory] = {}
        self.files: dict[str, File] = {}
        self.symlinks: dict[str, str] = {}

    def _descend(self, parts: list[str]) -> NestedDirectory:
        node = self
        for part in parts:
            node = node.subdirs.setdefault(part, NestedDirectory())
        return node

    def add(self, file: File, relative_path: str) -> None:
        """Add *file* at *relative_path*, creating parent directories."""
        parts = _split(relative_path)
        self._descend(parts[:-1]).files[parts[-1]] = file

    def add_symlink(self, target: str, relative_path: str) -> None:
        parts = _split(relative_path)
        self._descend(parts[:-1]).symlinks[parts[-1]] = target

    def add_directory(self, relative_path: str) -> None:
        """Ensure an (possibly empty) directory exists at *relative_path*."""
        self._descend(_split(relative_path))

    def _build(
        self,
        generator: DigestGenerator,
        digest_map: dict[Digest, bytes] | None,
        descendants: list[Directory] | None,
    ) -> tuple[Directory, Digest]:
        dir_nodes = []
        for name in sorted(self.subdirs):
            child, child_digest = self.subdirs[name]._build(generator, digest_map, descendants)
            if descendants is not None:
                descendants.append(child)
            dir_nodes.append(DirectoryNode(name=name, digest=child_digest))

        directory = Directory(
            files=tuple(self.files[name].to_file_node(name) for name in sorted(self.files)),
            directories=tuple(dir_nodes),
            symlinks=tuple(
                SymlinkNode(name=name, target=self.symlinks[name])
                for name in sorted(self.symlinks)
            ),
        )
        data = serialize_directory(directory)
        digest = generator.hash(data)
        if digest_map is not None:
            digest_map[digest] = data
        return directory, digest

    def to_directory(self, generator: DigestGenerator | None = None) -> Directory:
        return self._build(generator or DigestGenerator(), None, None)[0]

    def to_digest(
        self,
        generator: DigestGenerator | None = None,
        digest_map: dict[Digest, bytes] | None = None,
    ) -> Digest:
        """Digest of this directory's record.

        If *digest_map* is given, the serialized record of this directory and
        of every directory below it is stored there under its digest.
        """
        return self._build(generator or DigestGenerator(), digest_map, None)[1]

    def to_tree(self, generator: DigestGenerator | None = None) -> Tree:
        descendants: list[Directory] = []
        root, _ = self._build(generator or DigestGenerator(), None, descendants)
        return Tree(root=root, children=tuple(dict.fromkeys(descendants)))


def make_nested_directory(
    path: str | Path,
    generator: DigestGenerator | None = None,
    file_map: dict[Digest, str] | None = None,
    capture_properties: list[str] | tuple[str, ...] = (),
) -> NestedDirectory:
    """Hash the directory at *path* into a NestedDirectory.

    Symlinks are recorded as symlinks, never followed. When *file_map* is
    given it receives ``digest -> absolute path`` for every regular file.
    """
    generator = generator or DigestGenerator()
    result = NestedDirectory()
    _walk(result, Path(path), generator, file_map, capture_properties)
    return result


def _walk(
    node: NestedDirectory,
    dir_path: Path,
    generator: DigestGenerator,
    file_map: dict[Digest, str] | None,
    capture_properties: list[str] | tuple[str, ...],
) -> None:
    with os.scandir(dir_path) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_symlink():
            node.symlinks[entry.name] = os.readlink(entry.path)
        elif entry.is_dir(follow_symlinks=False):
            child = node.subdirs.setdefault(entry.name, NestedDirectory())
            _walk(child, Path(entry.path), generator, file_map, capture_properties)
        elif entry.is_file(follow_symlinks=False):
            digest = generator.hash_file(entry.path)
            mode = entry.stat(follow_symlinks=False).st_mode
            node.files[entry.name] = File(
                digest=digest,
                is_executable=bool(mode & stat.S_IXUSR),
                node_properties=capture_node_properties(entry.path, capture_properties),
            )
            if file_map is not None:
                file_map[digest] = os.path.abspath(entry.path)
        else:
            logger.debug("Skipping special file %s", entry.path)

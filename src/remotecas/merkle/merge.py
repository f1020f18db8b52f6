"""Structural merge of two Merkle directory trees.

The merge walks both trees from their roots, aligned by path. Entries that
exist on one side are copied, identical entries are kept once, directories
present on both sides are merged recursively, and anything else at the same
path is a collision that fails the whole merge.

Only the directory records that differ from both inputs are re-serialized;
they are returned in ``MergeResult.digest_map`` so the caller can upload
them before using the new root digest.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from remotecas.hashing.generator import DigestGenerator
from remotecas.protos.codec import serialize_directory
from remotecas.protos.models import (
    Digest,
    Directory,
    DirectoryNode,
    FileNode,
    SymlinkNode,
)

logger = logging.getLogger(__name__)

# Directory records of one tree, root first.
DirectoryTree = Sequence[Directory]

_Entry = FileNode | DirectoryNode | SymlinkNode


class MergeError(ValueError):
    """A merge input references a Directory it does not contain."""


@dataclass(frozen=True)
class MergeCollision:
    """Two trees disagree about the entry at *path*."""

    path: str
    input_entry: _Entry
    template_entry: _Entry

    @property
    def input_digest(self) -> Digest | None:
        return getattr(self.input_entry, "digest", None)

    @property
    def template_digest(self) -> Digest | None:
        return getattr(self.template_entry, "digest", None)

    def __str__(self) -> str:
        return (
            f"collision at {self.path!r}: input has {_describe(self.input_entry)}, "
            f"template has {_describe(self.template_entry)}"
        )


@dataclass(frozen=True)
class MergeResult:
    success: bool
    root_digest: Digest | None = None
    digest_map: dict[Digest, bytes] = field(default_factory=dict)
    collision: MergeCollision | None = None


class _CollisionDetected(Exception):
    def __init__(self, collision: MergeCollision) -> None:
        super().__init__(str(collision))
        self.collision = collision


def _describe(entry: _Entry) -> str:
    if isinstance(entry, FileNode):
        return f"file [{entry.digest}, executable = {entry.is_executable}]"
    if isinstance(entry, DirectoryNode):
        return f"directory [{entry.digest}]"
    return f"symlink [-> {entry.target}]"


def _entries(directory: Directory) -> dict[str, _Entry]:
    entries: dict[str, _Entry] = {}
    for f in directory.files:
        entries[f.name] = f
    for d in directory.directories:
        entries[d.name] = d
    for s in directory.symlinks:
        entries[s.name] = s
    return entries


def _join(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def _lookup(arena: dict[Digest, Directory], digest: Digest, path: str) -> Directory:
    try:
        return arena[digest]
    except KeyError:
        raise MergeError(
            f"Directory {digest} at {path or '/'!r} is not part of the merge input"
        ) from None


def _merge_entry(input_entry: _Entry, template_entry: _Entry) -> _Entry | None:
    """Resolve two non-directory entries with the same name; None on collision."""
    if input_entry == template_entry:
        return input_entry
    if (
        isinstance(input_entry, FileNode)
        and isinstance(template_entry, FileNode)
        and input_entry.digest == template_entry.digest
        and input_entry.is_executable == template_entry.is_executable
    ):
        # Same content, differing only in node properties.
        return input_entry
    return None


def _merge(
    input_digest: Digest | None,
    template_digest: Digest | None,
    path: str,
    arena: dict[Digest, Directory],
    generator: DigestGenerator,
) -> tuple[Digest, dict[Digest, bytes]]:
    """Merge two directories; return the merged digest and the new records below it."""
    if input_digest is None:
        return template_digest, {}
    if template_digest is None or input_digest == template_digest:
        return input_digest, {}

    input_entries = _entries(_lookup(arena, input_digest, path))
    template_entries = _entries(_lookup(arena, template_digest, path))

    new_records: dict[Digest, bytes] = {}
    files: list[FileNode] = []
    directories: list[DirectoryNode] = []
    symlinks: list[SymlinkNode] = []

    for name in sorted(input_entries.keys() | template_entries.keys()):
        entry_path = _join(path, name)
        ours = input_entries.get(name)
        theirs = template_entries.get(name)

        if ours is None or theirs is None:
            merged = ours if theirs is None else theirs
        elif isinstance(ours, DirectoryNode) and isinstance(theirs, DirectoryNode):
            child_digest, child_records = _merge(
                ours.digest, theirs.digest, entry_path, arena, generator
            )
            new_records.update(child_records)
            merged = DirectoryNode(name=name, digest=child_digest)
        else:
            merged = _merge_entry(ours, theirs)
            if merged is None:
                raise _CollisionDetected(MergeCollision(entry_path, ours, theirs))

        if isinstance(merged, FileNode):
            files.append(merged)
        elif isinstance(merged, DirectoryNode):
            directories.append(merged)
        else:
            symlinks.append(merged)

    directory = Directory(
        files=tuple(files), directories=tuple(directories), symlinks=tuple(symlinks)
    )
    data = serialize_directory(directory)
    digest = generator.hash(data)
    if digest not in (input_digest, template_digest):
        new_records[digest] = data
    return digest, new_records


def _load(
    tree: DirectoryTree, arena: dict[Digest, Directory], generator: DigestGenerator
) -> Digest | None:
    """Add every record of *tree* to *arena*; return the root digest."""
    root_digest = None
    for index, directory in enumerate(tree):
        digest = generator.hash(serialize_directory(directory))
        if digest in arena:
            logger.debug("digest [%s] already exists (identical record)", digest)
        arena[digest] = directory
        if index == 0:
            root_digest = digest
    return root_digest


def create_merged_digest(
    input_tree: DirectoryTree,
    template_tree: DirectoryTree,
    generator: DigestGenerator | None = None,
) -> MergeResult:
    """Merge *template_tree* into *input_tree* without modifying either.

    Returns a successful result holding the merged root digest and the newly
    created directory records, or a failed result describing the first
    collision found. Merging with an empty tree returns the other root
    unchanged; merging two empty trees fails.
    """
    generator = generator or DigestGenerator()
    if not input_tree and not template_tree:
        logger.error("invalid args: both input trees are empty")
        return MergeResult(success=False)

    arena: dict[Digest, Directory] = {}
    input_root = _load(input_tree, arena, generator)
    template_root = _load(template_tree, arena, generator)

    try:
        root_digest, digest_map = _merge(input_root, template_root, "", arena, generator)
    except _CollisionDetected as e:
        logger.error("Merge failed, %s", e.collision)
        return MergeResult(success=False, collision=e.collision)

    return MergeResult(success=True, root_digest=root_digest, digest_map=digest_map)


def describe_tree(tree: DirectoryTree, generator: DigestGenerator | None = None) -> str:
    """Render every path in *tree* on its own line, for logs and debugging."""
    if not tree:
        return ""
    generator = generator or DigestGenerator()
    arena: dict[Digest, Directory] = {}
    root_digest = _load(tree, arena, generator)

    lines: list[str] = []

    def _walk(directory: Directory, prefix: str) -> None:
        for f in directory.files:
            lines.append(f"file:    {_join(prefix, f.name)} [{f.digest}, executable = {f.is_executable}]")
        for s in directory.symlinks:
            lines.append(f"symlink: {_join(prefix, s.name)}, {s.target}")
        for d in directory.directories:
            sub_path = _join(prefix, d.name)
            lines.append(f"dir:     {sub_path} [{d.digest}]")
            child = arena.get(d.digest)
            if child is None:
                logger.error("error finding digest %s", d.digest)
                continue
            _walk(child, sub_path)

    _walk(arena[root_digest], "")
    return "\n".join(lines)

"""Merkle tree construction and merging."""

from remotecas.merkle.merge import (
    DirectoryTree,
    MergeCollision,
    MergeError,
    MergeResult,
    create_merged_digest,
    describe_tree,
)
from remotecas.merkle.nested import (
    File,
    NestedDirectory,
    capture_node_properties,
    make_nested_directory,
)

__all__ = [
    "DirectoryTree",
    "File",
    "MergeCollision",
    "MergeError",
    "MergeResult",
    "NestedDirectory",
    "capture_node_properties",
    "create_merged_digest",
    "describe_tree",
    "make_nested_directory",
]

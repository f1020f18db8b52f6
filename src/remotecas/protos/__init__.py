"""Remote Execution API records and their wire encoding."""

from remotecas.protos.codec import (
    parse_directory,
    parse_tree,
    serialize_directory,
    serialize_tree,
)
from remotecas.protos.models import (
    ActionResult,
    Command,
    Digest,
    Directory,
    DirectoryNode,
    FileNode,
    NodeProperty,
    OutputDirectory,
    OutputFile,
    Status,
    SymlinkNode,
    Tree,
)

__all__ = [
    "ActionResult",
    "Command",
    "Digest",
    "Directory",
    "DirectoryNode",
    "FileNode",
    "NodeProperty",
    "OutputDirectory",
    "OutputFile",
    "Status",
    "SymlinkNode",
    "Tree",
    "parse_directory",
    "parse_tree",
    "serialize_directory",
    "serialize_tree",
]

"""Protobuf wire encoding for Directory and Tree records.

The message layouts mirror ``build.bazel.remote.execution.v2`` so that the
bytes (and therefore the digests) match what any other Remote Execution API
client produces for the same record.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from remotecas.protos.models import (
    Digest,
    Directory,
    DirectoryNode,
    FileNode,
    NodeProperty,
    SymlinkNode,
    Tree,
)

_PACKAGE = "build.bazel.remote.execution.v2"

_FD = descriptor_pb2.FieldDescriptorProto

# message name -> [(field name, number, type, label, message type or None)]
_MESSAGES: dict[str, list[tuple[str, int, int, int, str | None]]] = {
    "Digest": [
        ("hash", 1, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
        ("size_bytes", 2, _FD.TYPE_INT64, _FD.LABEL_OPTIONAL, None),
    ],
    "NodeProperty": [
        ("name", 1, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
        ("value", 2, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
    ],
    "NodeProperties": [
        ("properties", 1, _FD.TYPE_MESSAGE, _FD.LABEL_REPEATED, "NodeProperty"),
    ],
    "FileNode": [
        ("name", 1, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
        ("digest", 2, _FD.TYPE_MESSAGE, _FD.LABEL_OPTIONAL, "Digest"),
        ("is_executable", 4, _FD.TYPE_BOOL, _FD.LABEL_OPTIONAL, None),
        ("node_properties", 6, _FD.TYPE_MESSAGE, _FD.LABEL_OPTIONAL, "NodeProperties"),
    ],
    "DirectoryNode": [
        ("name", 1, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
        ("digest", 2, _FD.TYPE_MESSAGE, _FD.LABEL_OPTIONAL, "Digest"),
    ],
    "SymlinkNode": [
        ("name", 1, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
        ("target", 2, _FD.TYPE_STRING, _FD.LABEL_OPTIONAL, None),
    ],
    "Directory": [
        ("files", 1, _FD.TYPE_MESSAGE, _FD.LABEL_REPEATED, "FileNode"),
        ("directories", 2, _FD.TYPE_MESSAGE, _FD.LABEL_REPEATED, "DirectoryNode"),
        ("symlinks", 3, _FD.TYPE_MESSAGE, _FD.LABEL_REPEATED, "SymlinkNode"),
    ],
    "Tree": [
        ("root", 1, _FD.TYPE_MESSAGE, _FD.LABEL_OPTIONAL, "Directory"),
        ("children", 2, _FD.TYPE_MESSAGE, _FD.LABEL_REPEATED, "Directory"),
    ],
}


def _build_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="remotecas/remote_execution.proto",
        package=_PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in _MESSAGES.items():
        message_proto = file_proto.message_type.add(name=message_name)
        for name, number, field_type, label, type_name in fields:
            field = message_proto.field.add(
                name=name, number=number, type=field_type, label=label
            )
            if type_name is not None:
                field.type_name = f".{_PACKAGE}.{type_name}"
    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_POOL = _build_pool()


def _message_class(name: str):
    return message_factory.GetMessageClass(
        _POOL.FindMessageTypeByName(f"{_PACKAGE}.{name}")
    )


DirectoryProto = _message_class("Directory")
TreeProto = _message_class("Tree")


# ------------------------------------------------------------------
# Model -> protobuf
# ------------------------------------------------------------------


def _fill_digest(target, digest: Digest) -> None:
    target.hash = digest.hash
    target.size_bytes = digest.size_bytes


def _fill_directory(target, directory: Directory) -> None:
    for f in directory.files:
        node = target.files.add(name=f.name, is_executable=f.is_executable)
        _fill_digest(node.digest, f.digest)
        for prop in f.node_properties:
            node.node_properties.properties.add(name=prop.name, value=prop.value)
    for d in directory.directories:
        node = target.directories.add(name=d.name)
        _fill_digest(node.digest, d.digest)
    for s in directory.symlinks:
        target.symlinks.add(name=s.name, target=s.target)


def directory_to_proto(directory: Directory):
    msg = DirectoryProto()
    _fill_directory(msg, directory)
    return msg


def tree_to_proto(tree: Tree):
    msg = TreeProto()
    _fill_directory(msg.root, tree.root)
    for child in tree.children:
        _fill_directory(msg.children.add(), child)
    return msg


# ------------------------------------------------------------------
# protobuf -> Model
# ------------------------------------------------------------------


def _digest_from_proto(msg) -> Digest:
    return Digest(hash=msg.hash, size_bytes=msg.size_bytes)


def directory_from_proto(msg) -> Directory:
    return Directory(
        files=tuple(
            FileNode(
                name=f.name,
                digest=_digest_from_proto(f.digest),
                is_executable=f.is_executable,
                node_properties=tuple(
                    NodeProperty(name=p.name, value=p.value)
                    for p in f.node_properties.properties
                ),
            )
            for f in msg.files
        ),
        directories=tuple(
            DirectoryNode(name=d.name, digest=_digest_from_proto(d.digest))
            for d in msg.directories
        ),
        symlinks=tuple(
            SymlinkNode(name=s.name, target=s.target) for s in msg.symlinks
        ),
    )


# ------------------------------------------------------------------
# Bytes
# ------------------------------------------------------------------


def serialize_directory(directory: Directory) -> bytes:
    """Deterministic wire bytes for *directory*."""
    return directory_to_proto(directory).SerializeToString(deterministic=True)


def parse_directory(data: bytes) -> Directory:
    msg = DirectoryProto()
    msg.ParseFromString(data)
    return directory_from_proto(msg)


def serialize_tree(tree: Tree) -> bytes:
    return tree_to_proto(tree).SerializeToString(deterministic=True)


def parse_tree(data: bytes) -> Tree:
    msg = TreeProto()
    msg.ParseFromString(data)
    return Tree(
        root=directory_from_proto(msg.root),
        children=tuple(directory_from_proto(c) for c in msg.children),
    )

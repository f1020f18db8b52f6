"""Tests for remotecas.protos: record models and wire encoding."""

import hashlib

import grpc
import pytest
from pydantic import ValidationError

from remotecas.hashing import make_digest
from remotecas.protos import (
    Digest,
    Directory,
    DirectoryNode,
    FileNode,
    NodeProperty,
    Status,
    SymlinkNode,
    Tree,
    parse_directory,
    parse_tree,
    serialize_directory,
    serialize_tree,
)


# ── Wire encoding ───────────────────────────────────────────────────


class TestSerializeDirectory:
    def test_empty_directory_is_empty_bytes(self):
        assert serialize_directory(Directory()) == b""

    def test_empty_directory_digest(self):
        digest = make_digest(serialize_directory(Directory()))
        assert digest.hash == hashlib.sha256(b"").hexdigest()
        assert digest.size_bytes == 0

    def test_symlink_field_layout(self):
        directory = Directory(symlinks=(SymlinkNode(name="a", target="b"),))
        assert serialize_directory(directory) == b"\x1a\x06\x0a\x01a\x12\x01b"

    def test_deterministic(self):
        directory = Directory(
            files=(
                FileNode(name="a", digest=make_digest(b"a"), is_executable=True),
                FileNode(name="b", digest=make_digest(b"b")),
            ),
            directories=(DirectoryNode(name="sub", digest=make_digest(b"")),),
        )
        assert serialize_directory(directory) == serialize_directory(directory.model_copy())

    def test_entry_order_preserved(self):
        directory = Directory(
            files=(
                FileNode(name="b", digest=make_digest(b"b")),
                FileNode(name="a", digest=make_digest(b"a")),
            )
        )
        parsed = parse_directory(serialize_directory(directory))
        assert [f.name for f in parsed.files] == ["b", "a"]


class TestParse:
    def test_parse_sample(self, sample_directory_bytes):
        directory = parse_directory(sample_directory_bytes)
        (node,) = directory.files
        assert node.name == "hello.txt"
        assert node.digest == make_digest(b"hello")
        assert node.is_executable is False

    def test_node_properties_survive(self):
        node = FileNode(
            name="f",
            digest=make_digest(b"f"),
            node_properties=(NodeProperty(name="MTime", value="2024-01-01T00:00:00.000000Z"),),
        )
        parsed = parse_directory(serialize_directory(Directory(files=(node,))))
        assert parsed.files[0] == node

    def test_tree(self):
        child = Directory(files=(FileNode(name="x", digest=make_digest(b"x")),))
        root = Directory(
            directories=(
                DirectoryNode(name="a", digest=make_digest(serialize_directory(child))),
            )
        )
        tree = Tree(root=root, children=(child,))
        parsed = parse_tree(serialize_tree(tree))
        assert parsed == tree
        assert parsed.directories() == [root, child]


# ── Models ──────────────────────────────────────────────────────────


class TestModels:
    def test_digest_rejects_uppercase_hash(self):
        with pytest.raises(ValidationError):
            Digest(hash="ABCDEF", size_bytes=1)

    def test_digest_is_frozen(self):
        d = make_digest(b"x")
        with pytest.raises(ValidationError):
            d.size_bytes = 3

    def test_entry_names(self):
        directory = Directory(
            files=(FileNode(name="f", digest=make_digest(b"")),),
            directories=(DirectoryNode(name="d", digest=make_digest(b"")),),
            symlinks=(SymlinkNode(name="s", target="f"),),
        )
        assert directory.entry_names() == {"f", "d", "s"}

    def test_status_defaults_ok(self):
        assert Status().ok

    def test_status_str(self):
        status = Status(code=grpc.StatusCode.NOT_FOUND, message="gone")
        assert not status.ok
        assert str(status) == "NOT_FOUND: gone"

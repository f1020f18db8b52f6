"""Tests for remotecas.merkle.nested: building Directory records."""

import os
import re

import pytest

from remotecas.hashing import DigestGenerator, make_digest
from remotecas.merkle import File, NestedDirectory, make_nested_directory
from remotecas.merkle.nested import capture_node_properties
from remotecas.protos import Directory, parse_directory, serialize_directory


# ── NestedDirectory ─────────────────────────────────────────────────


class TestNestedDirectory:
    def test_empty_directory_digest(self):
        assert NestedDirectory().to_digest() == make_digest(b"")

    def test_entries_sorted(self):
        nested = NestedDirectory()
        nested.add(File(digest=make_digest(b"z")), "z.txt")
        nested.add(File(digest=make_digest(b"a")), "a.txt")
        directory = nested.to_directory()
        assert [f.name for f in directory.files] == ["a.txt", "z.txt"]

    def test_insertion_order_does_not_change_digest(self):
        first, second = NestedDirectory(), NestedDirectory()
        first.add(File(digest=make_digest(b"1")), "x/1")
        first.add(File(digest=make_digest(b"2")), "y/2")
        second.add(File(digest=make_digest(b"2")), "y/2")
        second.add(File(digest=make_digest(b"1")), "x/1")
        assert first.to_digest() == second.to_digest()

    def test_creates_parents(self):
        nested = NestedDirectory()
        nested.add(File(digest=make_digest(b"x")), "a/b/c.txt")
        assert "c.txt" in nested.subdirs["a"].subdirs["b"].files

    def test_digest_map_holds_every_level(self):
        nested = NestedDirectory()
        nested.add(File(digest=make_digest(b"x")), "a/b/c.txt")
        digest_map = {}
        root = nested.to_digest(DigestGenerator(), digest_map)
        assert len(digest_map) == 3
        assert root in digest_map
        for digest, data in digest_map.items():
            assert make_digest(data) == digest

    def test_symlink_and_empty_directory(self):
        nested = NestedDirectory()
        nested.add_symlink("../target", "link")
        nested.add_directory("empty")
        directory = nested.to_directory()
        assert directory.symlinks[0].target == "../target"
        assert directory.directories[0].name == "empty"
        assert directory.directories[0].digest == make_digest(b"")

    def test_tree_children_deduplicated(self):
        nested = NestedDirectory()
        nested.add_directory("one")
        nested.add_directory("two")
        tree = nested.to_tree()
        assert tree.children == (Directory(),)

    @pytest.mark.parametrize("bad", ["", ".", "../x", "a/../../b"])
    def test_rejects_bad_paths(self, bad):
        with pytest.raises(ValueError):
            NestedDirectory().add(File(digest=make_digest(b"")), bad)


# ── Walking the filesystem ──────────────────────────────────────────


class TestMakeNestedDirectory:
    def test_matches_manual_build(self, tmp_path):
        (tmp_path / "sub").mkdir()
        (tmp_path / "a.txt").write_bytes(b"aaa")
        (tmp_path / "sub" / "b.txt").write_bytes(b"bbb")

        manual = NestedDirectory()
        manual.add(File(digest=make_digest(b"aaa")), "a.txt")
        manual.add(File(digest=make_digest(b"bbb")), "sub/b.txt")
        assert make_nested_directory(tmp_path).to_digest() == manual.to_digest()

    def test_executable_bit(self, tmp_path):
        script = tmp_path / "run.sh"
        script.write_bytes(b"#!/bin/sh\n")
        os.chmod(script, 0o755)
        nested = make_nested_directory(tmp_path)
        assert nested.files["run.sh"].is_executable is True

    def test_symlinks_not_followed(self, tmp_path):
        (tmp_path / "real").mkdir()
        (tmp_path / "real" / "f").write_bytes(b"f")
        os.symlink("real", tmp_path / "alias")
        nested = make_nested_directory(tmp_path)
        assert nested.symlinks == {"alias": "real"}
        assert "alias" not in nested.subdirs

    def test_file_map(self, tmp_path):
        (tmp_path / "a.txt").write_bytes(b"aaa")
        file_map = {}
        make_nested_directory(tmp_path, file_map=file_map)
        assert file_map == {make_digest(b"aaa"): str(tmp_path / "a.txt")}

    def test_records_parse_back(self, tmp_path):
        (tmp_path / "a.txt").write_bytes(b"aaa")
        directory = make_nested_directory(tmp_path).to_directory()
        assert parse_directory(serialize_directory(directory)) == directory


# ── Node properties ─────────────────────────────────────────────────


class TestNodeProperties:
    def test_unix_mode(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"")
        os.chmod(path, 0o640)
        (prop,) = capture_node_properties(path, ["UnixMode"])
        assert (prop.name, prop.value) == ("UnixMode", "0640")

    def test_mtime_format(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"")
        (prop,) = capture_node_properties(path, ["MTime"])
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{6}Z", prop.value)

    def test_unknown_property_skipped(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"")
        assert capture_node_properties(path, ["Color"]) == ()

    def test_captured_during_walk(self, tmp_path):
        (tmp_path / "f").write_bytes(b"")
        nested = make_nested_directory(tmp_path, capture_properties=["UnixMode"])
        assert nested.files["f"].node_properties[0].name == "UnixMode"

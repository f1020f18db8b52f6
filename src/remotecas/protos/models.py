"""Pydantic models for the Remote Execution API records used by remotecas."""

from __future__ import annotations

import re

import grpc
from pydantic import BaseModel, ConfigDict, Field, field_validator

_HEX_RE = re.compile(r"[0-9a-f]*")


class Digest(BaseModel):
    """Content identifier: lowercase hex hash plus the content size.

    Two digests are equal only when both the hash and the size match.
    """

    model_config = ConfigDict(frozen=True)

    hash: str
    size_bytes: int = Field(ge=0)

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, v: str) -> str:
        if not _HEX_RE.fullmatch(v):
            raise ValueError(f"hash must be lowercase hex, got {v!r}")
        return v

    def __str__(self) -> str:
        return f"{self.hash}/{self.size_bytes}"


class NodeProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str


class FileNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    digest: Digest
    is_executable: bool = False
    node_properties: tuple[NodeProperty, ...] = ()


class DirectoryNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    digest: Digest


class SymlinkNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    target: str


class Directory(BaseModel):
    """One level of a Merkle tree. Entries are kept in the order given."""

    model_config = ConfigDict(frozen=True)

    files: tuple[FileNode, ...] = ()
    directories: tuple[DirectoryNode, ...] = ()
    symlinks: tuple[SymlinkNode, ...] = ()

    def entry_names(self) -> set[str]:
        return (
            {f.name for f in self.files}
            | {d.name for d in self.directories}
            | {s.name for s in self.symlinks}
        )


class Tree(BaseModel):
    """A root Directory together with every Directory reachable from it."""

    model_config = ConfigDict(frozen=True)

    root: Directory
    children: tuple[Directory, ...] = ()

    def directories(self) -> list[Directory]:
        return [self.root, *self.children]


class OutputFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    digest: Digest
    is_executable: bool = False
    node_properties: tuple[NodeProperty, ...] = ()


class OutputDirectory(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    tree_digest: Digest


class ActionResult(BaseModel):
    """Accumulates the outputs captured after running a command.

    Mutable: capture appends to the output lists as it goes.
    """

    output_files: list[OutputFile] = Field(default_factory=list)
    output_directories: list[OutputDirectory] = Field(default_factory=list)
    exit_code: int = 0
    stdout_raw: bytes = b""
    stderr_raw: bytes = b""
    stdout_digest: Digest | None = None
    stderr_digest: Digest | None = None


class Command(BaseModel):
    """A command to run against a staged tree and the outputs it declares."""

    arguments: list[str] = Field(default_factory=list)
    working_directory: str = ""
    output_files: list[str] = Field(default_factory=list)
    output_directories: list[str] = Field(default_factory=list)
    output_node_properties: list[str] = Field(default_factory=list)


class Status(BaseModel):
    """Outcome of one remote call as reported by the transport."""

    model_config = ConfigDict(frozen=True)

    code: grpc.StatusCode = grpc.StatusCode.OK
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == grpc.StatusCode.OK

    def __str__(self) -> str:
        return f"{self.code.name}: {self.message}"

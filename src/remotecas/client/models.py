"""Pydantic models for CAS client requests and responses."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from remotecas.protos.models import Digest, NodeProperty, Status


class BlobSizeMismatchError(ValueError):
    """A blob sent to or read from CAS does not have the size its digest promises."""

    def __init__(self, digest: Digest, actual_size: int) -> None:
        self.digest = digest
        self.actual_size = actual_size
        super().__init__(
            f"Size of blob does not match digest {digest}: "
            f"got {actual_size} bytes"
        )


class StageTreeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str


class CapturedFile(BaseModel):
    """Per-path result of a capture-files call."""

    model_config = ConfigDict(frozen=True)

    path: str
    digest: Digest | None = None
    node_properties: tuple[NodeProperty, ...] = ()
    status: Status = Field(default_factory=Status)


class CaptureFilesResponse(BaseModel):
    responses: list[CapturedFile] = Field(default_factory=list)


class CapturedTree(BaseModel):
    """Per-path result of a capture-tree call."""

    model_config = ConfigDict(frozen=True)

    path: str
    tree_digest: Digest | None = None
    status: Status = Field(default_factory=Status)


class CaptureTreeResponse(BaseModel):
    responses: list[CapturedTree] = Field(default_factory=list)


class UploadRequest(BaseModel):
    """One blob for :meth:`CASClient.upload_blobs`, held in memory or on disk."""

    model_config = ConfigDict(frozen=True)

    digest: Digest
    data: bytes | None = None
    path: str | None = None

    @model_validator(mode="after")
    def check_source(self) -> UploadRequest:
        if (self.data is None) == (self.path is None):
            raise ValueError("exactly one of data and path must be set")
        return self

    def read(self) -> bytes:
        if self.data is not None:
            return self.data
        return Path(self.path).read_bytes()


class UploadResult(BaseModel):
    """Outcome for one digest of a batch upload."""

    model_config = ConfigDict(frozen=True)

    digest: Digest
    status: Status = Field(default_factory=Status)


class ReadBlobResult(BaseModel):
    """Outcome for one digest of a batch read."""

    model_config = ConfigDict(frozen=True)

    digest: Digest
    status: Status = Field(default_factory=Status)
    data: bytes = b""

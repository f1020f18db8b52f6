"""CAS client and the transport interface it is built on."""

from remotecas.client.base import CASTransport
from remotecas.client.client import CASClient, make_batches
from remotecas.client.models import (
    BlobSizeMismatchError,
    CapturedFile,
    CapturedTree,
    CaptureFilesResponse,
    CaptureTreeResponse,
    ReadBlobResult,
    StageTreeResponse,
    UploadRequest,
    UploadResult,
)

__all__ = [
    "BlobSizeMismatchError",
    "CASClient",
    "CASTransport",
    "CaptureFilesResponse",
    "CaptureTreeResponse",
    "CapturedFile",
    "CapturedTree",
    "ReadBlobResult",
    "StageTreeResponse",
    "UploadRequest",
    "UploadResult",
    "make_batches",
]

"""Client-side toolkit for content-addressable storage."""

from remotecas.client import CASClient, CASTransport
from remotecas.hashing import DigestFunction, DigestGenerator, make_digest
from remotecas.merkle import MergeResult, create_merged_digest
from remotecas.protos import ActionResult, Command, Digest, Directory, Tree
from remotecas.retry import GrpcError, RetryLimitExceededError
from remotecas.staging import (
    FallbackStagedDirectory,
    LocalCasStagedDirectory,
    StagedDirectory,
    create_staged_directory,
)

__all__ = [
    "ActionResult",
    "CASClient",
    "CASTransport",
    "Command",
    "Digest",
    "DigestFunction",
    "DigestGenerator",
    "Directory",
    "FallbackStagedDirectory",
    "GrpcError",
    "LocalCasStagedDirectory",
    "MergeResult",
    "RetryLimitExceededError",
    "StagedDirectory",
    "Tree",
    "create_merged_digest",
    "create_staged_directory",
    "make_digest",
]

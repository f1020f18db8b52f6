import tempfile
from typing import Literal

import grpc
from pydantic import BaseModel, Field, field_validator

from remotecas.hashing.generator import HASH_BUFFER_SIZE_BYTES


class HashingConfig(BaseModel):
    digest_function: Literal["md5", "sha1", "sha256", "sha384", "sha512"] = "sha256"
    buffer_size_bytes: int = Field(default=HASH_BUFFER_SIZE_BYTES, gt=0)


class RetryConfig(BaseModel):
    limit: int = Field(default=4, ge=0)
    delay_ms: int = Field(default=100, gt=0)
    retryable_codes: list[str] = Field(default_factory=lambda: ["UNAVAILABLE"])

    @field_validator("retryable_codes")
    @classmethod
    def validate_codes(cls, v: list[str]) -> list[str]:
        unknown = [code for code in v if code not in grpc.StatusCode.__members__]
        if unknown:
            raise ValueError(f"unknown gRPC status codes: {', '.join(unknown)}")
        return v

    def status_codes(self) -> frozenset[grpc.StatusCode]:
        return frozenset(grpc.StatusCode[code] for code in self.retryable_codes)


class RemoteConfig(BaseModel):
    request_timeout: float | None = Field(default=None, gt=0)
    metadata: dict[str, str] = Field(default_factory=dict)
    # gRPC receive limit (4 MiB) less room for request metadata
    max_batch_total_size_bytes: int = Field(default=4 * 1024 * 1024 - (1 << 16), gt=0)
    bytestream_chunk_size_bytes: int = Field(default=1024 * 1024, gt=0)


class StagingConfig(BaseModel):
    strategy: Literal["fallback", "localcas"] = "fallback"
    root: str = Field(default_factory=tempfile.gettempdir)
    prefix: str = "remotecas-run"


class RunnerConfig(BaseModel):
    max_inlined_output_bytes: int = Field(default=1024, ge=0)


class RemoteCASConfig(BaseModel):
    hashing: HashingConfig = Field(default_factory=HashingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    staging: StagingConfig = Field(default_factory=StagingConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)

"""Staged directories: CAS trees materialized on local disk."""

from remotecas.client.client import CASClient
from remotecas.config.models import StagingConfig
from remotecas.protos.models import Digest
from remotecas.staging.base import CaptureError, StagedDirectory
from remotecas.staging.fallback import FallbackStagedDirectory
from remotecas.staging.localcas import LocalCasStagedDirectory


def create_staged_directory(
    digest: Digest, client: CASClient, config: StagingConfig | None = None
) -> StagedDirectory:
    """Stage *digest* with the strategy named in *config*."""
    config = config or StagingConfig()
    if config.strategy == "localcas":
        return LocalCasStagedDirectory(digest, client, root=config.root)
    if config.strategy == "fallback":
        return FallbackStagedDirectory(digest, client, root=config.root, prefix=config.prefix)
    raise ValueError(
        f"Unsupported staging strategy: {config.strategy!r}. "
        "Supported: fallback, localcas"
    )


__all__ = [
    "CaptureError",
    "FallbackStagedDirectory",
    "LocalCasStagedDirectory",
    "StagedDirectory",
    "create_staged_directory",
]

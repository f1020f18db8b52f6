from .loader import load_config
from .models import (
    HashingConfig,
    RemoteCASConfig,
    RemoteConfig,
    RetryConfig,
    RunnerConfig,
    StagingConfig,
)

__all__ = [
    "HashingConfig",
    "RemoteCASConfig",
    "RemoteConfig",
    "RetryConfig",
    "RunnerConfig",
    "StagingConfig",
    "load_config",
]

"""Reading remotecas settings from YAML files.

A settings file holds any subset of the :class:`RemoteCASConfig` sections;
omitted keys keep their defaults. String values may reference environment
variables as ``${NAME}``, which keeps tokens for remote metadata out of the
file itself.
"""

import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import RemoteCASConfig

CONFIG_FILENAME = "remotecas.yaml"

_ENV_REFERENCE = re.compile(r"\$\{(\w+)\}")


def _candidate_paths(cli_path: str | None) -> list[Path]:
    """Settings files to try, most specific first."""
    candidates = [Path(CONFIG_FILENAME), Path.home() / ".remotecas" / "config.yaml"]
    if cli_path:
        candidates.insert(0, Path(cli_path))
    return candidates


def load_config(cli_path: str | None = None) -> RemoteCASConfig:
    """Build the client settings from the first usable settings file.

    *cli_path* must exist when given. Otherwise ``./remotecas.yaml`` and then
    ``~/.remotecas/config.yaml`` are tried; an empty file counts as absent.
    With nothing found the built-in defaults apply.
    """
    if cli_path and not Path(cli_path).exists():
        raise FileNotFoundError(f"Config file not found: {cli_path}")

    for path in _candidate_paths(cli_path):
        if not path.exists():
            continue
        try:
            with open(path) as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if raw is None:
            continue
        try:
            return RemoteCASConfig(**_expand_env_vars(raw))
        except ValidationError as e:
            raise ValueError(f"Invalid config in {path}: {e}") from e

    return RemoteCASConfig()


def _expand_env_vars(obj: object) -> object:
    """Substitute ``${NAME}`` in every string below *obj*; unset names become empty."""
    if isinstance(obj, str):
        return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), ""), obj)
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Starter remotecas.yaml; every value shown is the default
DEFAULT_CONFIG_TEMPLATE = """\
# remotecas.yaml

# Content hashing
hashing:
  digest_function: "sha256"    # md5 | sha1 | sha256 | sha384 | sha512
  buffer_size_bytes: 1048576   # chunk size when hashing files

# Retries for remote calls
retry:
  limit: 4                     # retries after the first attempt
  delay_ms: 100                # first backoff; grows by 1.6x per retry
  retryable_codes: ["UNAVAILABLE"]

# Remote CAS
remote:
  # request_timeout: 30        # seconds, applied to every attempt
  metadata: {}                 # extra headers, e.g. {authorization: "Bearer ${CAS_TOKEN}"}
  max_batch_total_size_bytes: 4128768   # per batch read or update request
  bytestream_chunk_size_bytes: 1048576  # per streamed write

# Staged directories
staging:
  strategy: "fallback"         # fallback | localcas
  # root: "/tmp"               # parent directory for staged trees
  prefix: "remotecas-run"

# Action runner
runner:
  max_inlined_output_bytes: 1024
"""

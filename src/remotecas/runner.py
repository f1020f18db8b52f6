"""Run a command against a staged input tree and capture its outputs."""

from __future__ import annotations

import logging
import subprocess

from remotecas.client.client import CASClient
from remotecas.config.models import RemoteCASConfig
from remotecas.protos.models import ActionResult, Command, Digest
from remotecas.staging import StagedDirectory, create_staged_directory

logger = logging.getLogger(__name__)


def _store_output(
    data: bytes, client: CASClient, max_inlined: int
) -> tuple[bytes, Digest | None]:
    """Keep small output inline; upload anything larger and return its digest."""
    if len(data) > max_inlined:
        return b"", client.upload_blob(data)
    return data, None


def execute_and_store(
    command: Command,
    staged: StagedDirectory,
    client: CASClient,
    max_inlined_output_bytes: int = 1024,
    result: ActionResult | None = None,
) -> ActionResult:
    """Run *command* inside *staged* and record exit code, stdout and stderr."""
    if not command.arguments:
        raise ValueError("Command has no arguments to run")
    if result is None:
        result = ActionResult()

    cwd = staged.absolute_path(command.working_directory or ".")
    logger.debug("Running %s in %s", command.arguments, cwd)
    proc = subprocess.run(command.arguments, cwd=cwd, capture_output=True)

    result.exit_code = proc.returncode
    result.stdout_raw, result.stdout_digest = _store_output(
        proc.stdout, client, max_inlined_output_bytes
    )
    result.stderr_raw, result.stderr_digest = _store_output(
        proc.stderr, client, max_inlined_output_bytes
    )
    return result


def run_action(
    command: Command,
    input_root_digest: Digest,
    client: CASClient,
    config: RemoteCASConfig | None = None,
) -> ActionResult:
    """Stage *input_root_digest*, run *command* in it and capture its outputs.

    The staged tree is released before returning, whether or not the
    command succeeded.
    """
    config = config or client.config
    with create_staged_directory(input_root_digest, client, config.staging) as staged:
        result = execute_and_store(
            command, staged, client, config.runner.max_inlined_output_bytes
        )
        staged.capture_all_outputs(command, result)
    logger.debug("Action finished with exit code %d", result.exit_code)
    return result

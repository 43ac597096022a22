"""
Smoke-test runner — compile and run a minimal program as the final gate.

The program directory is copied into a throwaway working directory so
the build never writes into the verified environment's state; the copy
is removed afterwards whatever the result.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path

from provisioner.adapters.base import CommandRunner, tail
from provisioner.core.errors import SmokeTestFailed
from provisioner.core.models.build_spec import SmokeTest
from provisioner.core.models.run import SmokeResult

logger = logging.getLogger(__name__)


class SmokeTestRunner:
    """Run a variant's smoke test through the command runner.

    Args:
        runner: Command runner collaborator.
        timeout: Default timeout in seconds; a smaller per-test timeout wins.
        base_dir: Directory relative smoke-test paths resolve against.
    """

    def __init__(self, runner: CommandRunner, timeout: float = 600.0, base_dir: Path | None = None):
        self._runner = runner
        self._timeout = timeout
        self._base_dir = base_dir

    def resolve_path(self, smoke: SmokeTest) -> Path:
        path = Path(smoke.path)
        if not path.is_absolute() and self._base_dir is not None:
            path = self._base_dir / path
        return path

    def run(
        self,
        variant: str,
        smoke: SmokeTest,
        env: Mapping[str, str] | None = None,
    ) -> SmokeResult:
        """Copy the program, run its script, require exit status zero.

        Raises:
            SmokeTestFailed: Missing program, non-zero exit, or timeout.
        """
        source = self.resolve_path(smoke)
        if not source.is_dir():
            raise SmokeTestFailed(variant, f"program directory not found: {source}")

        timeout = self._timeout
        if smoke.timeout is not None:
            timeout = min(smoke.timeout, timeout)

        scratch = Path(tempfile.mkdtemp(prefix=f"smoke-{variant}-"))
        try:
            workdir = scratch / source.name
            try:
                shutil.copytree(source, workdir)
            except OSError as e:
                raise SmokeTestFailed(variant, f"cannot copy program: {e}") from e
            logger.info("Smoke test %s: %s in %s", variant, smoke.script, workdir)
            result = self._runner.execute(smoke.script, str(workdir), timeout, env)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        if result.timed_out:
            raise SmokeTestFailed(
                variant, f"timed out after {timeout}s",
                stderr_tail=tail(result.stderr),
            )
        if result.exit_code != 0:
            raise SmokeTestFailed(
                variant, f"exit status {result.exit_code}",
                exit_code=result.exit_code,
                stderr_tail=tail(result.stderr),
            )

        return SmokeResult(
            variant=variant,
            ok=True,
            exit_code=result.exit_code,
            duration_ms=result.elapsed_ms,
            stdout_tail=tail(result.stdout),
            stderr_tail=tail(result.stderr),
        )

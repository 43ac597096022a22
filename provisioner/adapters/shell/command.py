"""
Subprocess command runner — the single place provisioning commands run.

String commands go through bash with ``errexit`` and ``pipefail`` so a
multi-line script fails on its first failing line; argv lists run
directly. All timeout and launch-error handling is centralised here.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from collections.abc import Mapping, Sequence

from provisioner.adapters.base import CommandResult, CommandRunner, tail

logger = logging.getLogger(__name__)

SHELL: tuple[str, ...] = ("/bin/bash", "-e", "-o", "pipefail", "-c")

# Conventional exit code for "command not found".
EXIT_NOT_FOUND = 127

# Reported when the runner itself fails for a reason other than launching.
EXIT_UNEXPECTED = 1


class SubprocessCommandRunner(CommandRunner):
    """Run commands with ``subprocess.run`` and capture their output.

    Args:
        shell: argv prefix used for string commands.
        inherit_env: Whether commands see this process's environment
            (stage env is layered on top either way).
    """

    def __init__(self, shell: Sequence[str] = SHELL, inherit_env: bool = True):
        self._shell = tuple(shell)
        self._inherit_env = inherit_env

    @property
    def name(self) -> str:
        return "subprocess"

    def execute(
        self,
        command: str | Sequence[str],
        working_dir: str | None,
        timeout: float,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        if isinstance(command, str):
            argv = [*self._shell, command]
            recorded: str | list[str] = command
        else:
            argv = list(command)
            recorded = list(command)

        # ── Environment ──
        run_env = os.environ.copy() if self._inherit_env else {}
        if env:
            for key, value in env.items():
                run_env[key] = os.path.expandvars(value)

        logger.debug("Executing: %s (cwd=%s, timeout=%ss)", recorded, working_dir, timeout)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                env=run_env,
                cwd=working_dir,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=recorded,
                exit_code=None,
                stdout=tail(_decode(e.stdout)),
                stderr=tail(_decode(e.stderr)) or f"Command timed out ({timeout}s)",
                elapsed_ms=int((time.monotonic() - start) * 1000),
                timed_out=True,
            )
        except OSError as e:
            logger.debug("Cannot launch %s: %s", recorded, e)
            return CommandResult(
                command=recorded,
                exit_code=EXIT_NOT_FOUND,
                stderr=str(e),
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
        except Exception as e:
            logger.warning("Unexpected error running %s: %s", recorded, e)
            return CommandResult(
                command=recorded,
                exit_code=EXIT_UNEXPECTED,
                stderr=f"{type(e).__name__}: {e}",
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode != 0:
            logger.debug("Command exited with %d: %s", result.returncode, recorded)

        return CommandResult(
            command=recorded,
            exit_code=result.returncode,
            stdout=tail(result.stdout),
            stderr=tail(result.stderr),
            elapsed_ms=elapsed_ms,
        )


def _decode(output: str | bytes | None) -> str:
    """``TimeoutExpired`` may carry bytes even in text mode."""
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output

"""
Version probes — ask a tool for its self-reported version.

Read-only probes: runs ``<tool> -dumpversion`` (or any other arguments)
through a command runner and optionally extracts the version with a
regex. Some tools write their version to stderr, so both streams are
searched.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from collections.abc import Mapping, Sequence

from provisioner.adapters.base import CommandRunner, ProbeError, VersionProbe

logger = logging.getLogger(__name__)


class CommandVersionProbe(VersionProbe):
    """Probe a tool by running it.

    Args:
        runner: Command runner used to invoke the tool.
        pattern: Optional regex with one group capturing the version.
            Without it, the first non-empty output line is returned.
    """

    def __init__(self, runner: CommandRunner, pattern: str | None = None):
        self._runner = runner
        self._pattern = re.compile(pattern) if pattern else None

    def probe(
        self,
        tool_path: str,
        *,
        args: Sequence[str] = ("-dumpversion",),
        timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
    ) -> str:
        if not _tool_exists(tool_path):
            raise ProbeError(f"{tool_path}: not found")

        logger.debug("Probing %s %s", tool_path, " ".join(args))
        result = self._runner.execute([tool_path, *args], None, timeout, env)
        if result.timed_out:
            raise ProbeError(f"{tool_path}: timed out after {timeout}s")
        if result.exit_code != 0:
            detail = result.stderr.strip().splitlines()[-1:] or [""]
            raise ProbeError(f"{tool_path}: exited with {result.exit_code} {detail[0]}".rstrip())

        output = (result.stdout or "") + (result.stderr or "")
        if self._pattern is not None:
            match = self._pattern.search(output)
            if not match:
                raise ProbeError(f"{tool_path}: no version in output {output.strip()[:80]!r}")
            return match.group(1)

        for line in output.splitlines():
            if line.strip():
                return line.strip()
        raise ProbeError(f"{tool_path}: empty version output")


class StaticVersionProbe(VersionProbe):
    """Answers from a fixed table; used by mock mode and tests.

    Tools missing from the table behave like missing binaries.
    """

    def __init__(self, versions: Mapping[str, str]):
        self._versions = dict(versions)
        self.calls: list[str] = []

    def probe(
        self,
        tool_path: str,
        *,
        args: Sequence[str] = ("-dumpversion",),
        timeout: float = 30.0,
        env: Mapping[str, str] | None = None,
    ) -> str:
        self.calls.append(tool_path)
        if tool_path not in self._versions:
            raise ProbeError(f"{tool_path}: not found")
        return self._versions[tool_path]


def _tool_exists(tool_path: str) -> bool:
    if os.sep in tool_path:
        return os.path.isfile(tool_path) and os.access(tool_path, os.X_OK)
    return shutil.which(tool_path) is not None

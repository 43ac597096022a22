"""
Toolchain verifier — hard gate on the installed compiler version.

Right after a toolchain-producing stage finishes, every declared
compiler driver (typically the C and the C++ driver) is asked for its
version. The major token of the answer must equal the major token of
the requested version, otherwise the run fails. Never advisory, never
retried.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from provisioner.adapters.base import ProbeError, VersionProbe
from provisioner.core.engine.context import RunContext, render
from provisioner.core.engine.versions import Normalizer, major_token
from provisioner.core.errors import InvalidVersionSpec, ProbeUnavailable, VersionMismatch
from provisioner.core.models.build_spec import Stage
from provisioner.core.models.run import VerificationRecord
from provisioner.core.models.version import ComponentVersion

logger = logging.getLogger(__name__)


class VerificationAssertion:
    """Expected component version plus a probe producing the actual one.

    Evaluated exactly once.
    """

    def __init__(
        self,
        expected: ComponentVersion,
        probe: Callable[[], str],
        *,
        tool: str = "",
        normalize: Normalizer = major_token,
    ):
        self.expected = expected
        self.probe = probe
        self.tool = tool
        self.normalize = normalize
        self._evaluated = False

    @property
    def component(self) -> str:
        return self.expected.name

    @property
    def evaluated(self) -> bool:
        return self._evaluated

    def evaluate(self) -> VerificationRecord:
        """Run the probe and compare major tokens.

        Raises:
            ProbeUnavailable: The probe could not be invoked.
            VersionMismatch: The tool reports a different major version.
            RuntimeError: The assertion was already evaluated.
        """
        if self._evaluated:
            raise RuntimeError(f"Assertion for '{self.component}' was already evaluated")
        self._evaluated = True

        try:
            raw = self.probe()
        except (ProbeError, OSError) as e:
            raise ProbeUnavailable(self.component, tool=self.tool, detail=str(e)) from e

        expected = self.normalize(self.expected.effective)
        actual = self.normalize(raw)
        if not actual or actual != expected:
            raise VersionMismatch(
                self.component,
                expected,
                actual or raw.strip(),
                tool=self.tool,
            )

        return VerificationRecord(
            component=self.component,
            tool=self.tool,
            expected=expected,
            actual=actual,
            raw=raw.strip(),
            ok=True,
        )


class ToolchainVerifier:
    """Builds and evaluates assertions for toolchain-producing stages.

    Args:
        probe: Version probe collaborator.
        normalize: Maps a version string to a comparable token.
    """

    def __init__(self, probe: VersionProbe, normalize: Normalizer = major_token):
        self._probe = probe
        self._normalize = normalize

    def assertions_for(self, stage: Stage, context: RunContext) -> list[VerificationAssertion]:
        """One assertion per declared tool, in declaration order.

        A toolchain without tools is probed through a binary named after
        the component (e.g. ``gcc``) looked up on PATH.
        """
        toolchain = stage.toolchain
        if toolchain is None:
            return []

        expected = context.versions.get(toolchain.component)
        if expected is None:
            raise InvalidVersionSpec(
                toolchain.component, None,
                f"stage '{stage.id}' installs it but no version was requested",
            )

        values = context.stage_values(stage)
        env = context.stage_env(stage)
        tools = [(t.name, render(t.path, values)) for t in toolchain.tools]
        if not tools:
            tools = [(toolchain.component, toolchain.component)]

        assertions = []
        for tool_name, path in tools:
            def probe(path: str = path) -> str:
                return self._probe.probe(
                    path,
                    args=toolchain.probe_args,
                    timeout=context.probe_timeout,
                    env=env,
                )

            assertions.append(
                VerificationAssertion(
                    expected,
                    probe,
                    tool=f"{tool_name}={path}" if tool_name != path else path,
                    normalize=self._normalize,
                )
            )
        return assertions

    def verify(self, stage: Stage, context: RunContext) -> list[VerificationRecord]:
        """Evaluate every assertion of ``stage``; the first failure raises."""
        records = []
        for assertion in self.assertions_for(stage, context):
            record = assertion.evaluate()
            logger.info(
                "✓ %s: %s reports %s (expected %s)",
                stage.id, assertion.tool, record.raw, record.expected,
            )
            records.append(record)
        return records

"""
Build run — one end-to-end execution of a variant's stage graph.

The run is the top-level aggregate: it owns the resolved versions, the
stage graph, and the ordered outcome log, and walks a one-way state
machine:

    pending → resolving → graph_built → executing → verifying
            → smoke_testing → completed        (or → failed from anywhere)

Every provisioning error is terminal and ends up in the report; nothing
is retried. Artifacts are published only after the run completed.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from provisioner.adapters.base import CommandRunner, ImageStore, VersionProbe
from provisioner.core.engine.context import RunContext
from provisioner.core.engine.executor import CancelToken, OutcomeLog, StageExecutor
from provisioner.core.engine.graph import StageGraph, build_stage_graph
from provisioner.core.engine.smoke import SmokeTestRunner
from provisioner.core.engine.verifier import ToolchainVerifier
from provisioner.core.engine.versions import Normalizer, major_token, resolve_versions
from provisioner.core.errors import (
    ImageStoreError,
    ProbeUnavailable,
    ProvisionError,
    SmokeTestFailed,
)
from provisioner.core.models.build_spec import BuildSpec, Variant
from provisioner.core.models.run import (
    ALLOWED_TRANSITIONS,
    RunReport,
    RunState,
    SmokeResult,
    StageOutcome,
)
from provisioner.core.models.version import ComponentVersion
from provisioner.core.observability.logging_config import run_log_context

logger = logging.getLogger(__name__)


class InvalidTransition(RuntimeError):
    """A build run was driven through an illegal state change."""


@dataclass
class Collaborators:
    """External collaborators a build run talks to."""

    runner: CommandRunner
    probe: VersionProbe
    image_store: ImageStore | None = None


@dataclass
class RunSettings:
    """Caller-supplied knobs; ``None`` falls back to the spec's defaults."""

    action_timeout: float | None = None
    probe_timeout: float | None = None
    smoke_timeout: float | None = None
    workdir: str | None = None
    base_dir: Path | None = None          # where relative spec paths resolve
    max_workers: int = 1
    targets: list[str] = field(default_factory=list)
    normalize: Normalizer = major_token


def generate_run_id() -> str:
    """Generate a unique run ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"run-{now}-{short}"


class BuildRun:
    """Resolve, build, execute, verify, smoke-test, and publish one variant.

    A run is single-use: call ``run()`` once, then start a new BuildRun to
    retry.
    """

    def __init__(
        self,
        spec: BuildSpec,
        variant: Variant | None,
        collaborators: Collaborators,
        settings: RunSettings | None = None,
        run_id: str | None = None,
    ):
        self._spec = spec
        self._variant = variant
        self._collab = collaborators
        self._settings = settings or RunSettings()
        self._token = CancelToken()
        self._log = OutcomeLog()
        self._state = RunState.PENDING
        self._graph: StageGraph | None = None
        self._context: RunContext | None = None
        self._versions: dict[str, ComponentVersion] = {}
        self._published = False

        self.report = RunReport(
            run_id=run_id or generate_run_id(),
            spec_name=spec.name,
            variant=variant.name if variant is not None else spec.name,
        )

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def variant_name(self) -> str:
        return self.report.variant

    @property
    def graph(self) -> StageGraph | None:
        return self._graph

    @property
    def versions(self) -> dict[str, ComponentVersion]:
        return dict(self._versions)

    def cancel(self, reason: str = "cancellation requested") -> None:
        """Stop the run at the next action boundary."""
        logger.info("Cancelling run %s: %s", self.report.run_id, reason)
        self._token.cancel(reason)

    # ── State machine ────────────────────────────────────────────

    def _transition(self, new: RunState) -> None:
        current = self._state
        if new == RunState.FAILED:
            if current.terminal:
                raise InvalidTransition(f"Cannot fail a run that is already {current}")
        elif new not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(f"Illegal transition {current} → {new}")

        logger.debug("%s: %s → %s", self.report.run_id, current, new)
        self._state = new
        self.report.state = new

    # ── Lifecycle ────────────────────────────────────────────────

    def run(self) -> RunReport:
        """Drive the run to ``completed`` or ``failed``.

        Never raises provisioning errors: they are captured in the report.
        """
        if self._state != RunState.PENDING:
            raise InvalidTransition(f"Run {self.report.run_id} already started ({self._state})")

        with run_log_context(self.variant_name):
            return self._run()

    def _run(self) -> RunReport:
        start = time.monotonic()
        logger.info("Build run %s: %s", self.report.run_id, self.variant_name)

        try:
            self._resolve()
            self._build_graph()
            self._execute()
            self._verify()
            self._smoke_test()
            self._transition(RunState.COMPLETED)
        except ProvisionError as e:
            self.report.error = e.to_dict()
            self._transition(RunState.FAILED)
            logger.warning("✗ %s failed: %s", self.variant_name, e.message)
        finally:
            self.report.stages = self._stage_outcomes()
            self.report.ended_at = datetime.now(UTC).isoformat()
            self.report.duration_ms = int((time.monotonic() - start) * 1000)

        if self._state == RunState.COMPLETED:
            logger.info("✓ %s completed (%dms)", self.variant_name, self.report.duration_ms)
            self._publish()

        return self.report

    def _resolve(self) -> None:
        self._transition(RunState.RESOLVING)
        requested = self._spec.requested_versions(self._variant)
        self._versions = resolve_versions(requested, self._spec.constraints)
        self.report.versions = {n: v.effective for n, v in self._versions.items()}

        defaults = self._spec.defaults
        s = self._settings
        self._context = RunContext(
            versions=self._versions,
            workdir=s.workdir or defaults.workdir,
            action_timeout=s.action_timeout or defaults.action_timeout,
            probe_timeout=s.probe_timeout or defaults.probe_timeout,
        )

    def _build_graph(self) -> None:
        graph = build_stage_graph(self._spec.stages_for(self._variant))
        if self._settings.targets:
            graph = graph.subgraph(self._settings.targets)
        self._graph = graph
        self.report.order = list(graph.order)
        self._transition(RunState.GRAPH_BUILT)

    def _execute(self) -> None:
        assert self._graph is not None and self._context is not None
        self._transition(RunState.EXECUTING)
        executor = StageExecutor(
            self._collab.runner,
            verifier=ToolchainVerifier(self._collab.probe, self._settings.normalize),
            image_store=self._collab.image_store,
            max_workers=self._settings.max_workers,
            cancel_token=self._token,
        )
        executor.execute(self._graph, self._context, self._log)

    def _verify(self) -> None:
        """Every toolchain stage must have a passing verification on record.

        The probes themselves ran right after each toolchain stage; this
        phase only checks that none was left out.
        """
        assert self._graph is not None
        self._transition(RunState.VERIFYING)
        for stage in self._graph:
            if not stage.is_toolchain:
                continue
            outcome = self._log.get(stage.id)
            if outcome is None or not outcome.verifications or not all(
                v.ok for v in outcome.verifications
            ):
                assert stage.toolchain is not None
                raise ProbeUnavailable(
                    stage.toolchain.component,
                    detail=f"no passing verification recorded for stage '{stage.id}'",
                )

    def _smoke_test(self) -> None:
        assert self._graph is not None and self._context is not None
        self._transition(RunState.SMOKE_TESTING)
        smoke = self._variant.smoke_test if self._variant is not None else None
        if smoke is None:
            logger.info("%s: no smoke test declared", self.variant_name)
            return

        env: dict[str, str] = {}
        for stage in self._graph:
            env.update(self._context.stage_env(stage))

        runner = SmokeTestRunner(
            self._collab.runner,
            timeout=self._settings.smoke_timeout or self._spec.defaults.smoke_timeout,
            base_dir=self._settings.base_dir,
        )
        try:
            self.report.smoke_test = runner.run(self.variant_name, smoke, env)
        except SmokeTestFailed as e:
            self.report.smoke_test = SmokeResult(
                variant=self.variant_name,
                ok=False,
                exit_code=e.details.get("exit_code"),
                stderr_tail=e.details.get("stderr_tail", ""),
            )
            raise

    def _publish(self) -> None:
        """Publish every stage's artifacts, once, in topological order."""
        store = self._collab.image_store
        if store is None or self._graph is None or self._context is None or self._published:
            return
        self._published = True

        try:
            for stage in self._graph:
                if stage.produces:
                    artifacts = [
                        a.model_copy(update={"path": self._context.render_path(a.path, stage)})
                        for a in stage.produces
                    ]
                    store.publish(stage.id, artifacts)
        except ImageStoreError as e:
            self.report.publish_error = e.message
            logger.error("Publishing %s failed: %s", self.variant_name, e.message)
            return

        self.report.published = True

    def _stage_outcomes(self) -> list[StageOutcome]:
        """One outcome per planned stage, in graph order."""
        if self._graph is None:
            return []
        outcomes = []
        for stage in self._graph:
            outcome = self._log.get(stage.id)
            if outcome is None:
                outcome = StageOutcome(
                    stage_id=stage.id,
                    status="skipped",
                    actions_total=len(stage.actions),
                )
            outcomes.append(outcome)
        return outcomes

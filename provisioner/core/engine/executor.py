"""
Stage executor — the central provisioning loop.

Walks the stage graph in topological order, runs each stage's actions
strictly in sequence through the command runner, verifies toolchain
stages right after they finish, and stops at the first failure.

Flow per stage:
    fetch base image → actions (in order) → toolchain verification → outcome

With ``max_workers > 1`` independent stages run concurrently; the graph's
partial order is still enforced, and the first failure stops new stages
from starting and cancels running ones at their next action boundary.
"""

from __future__ import annotations

import contextvars
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime

from provisioner.adapters.base import CommandResult, CommandRunner, ImageStore, tail
from provisioner.core.engine.context import RunContext, render
from provisioner.core.engine.graph import StageGraph
from provisioner.core.engine.verifier import ToolchainVerifier
from provisioner.core.errors import ImageStoreError, ProvisionError, StageExecutionFailed
from provisioner.core.models.build_spec import ProvisionAction, Stage
from provisioner.core.models.run import StageOutcome

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class CancelToken:
    """Cooperative cancellation flag, checked at every action boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancellation requested") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()


class OutcomeLog:
    """Append-only, thread-safe record of stage outcomes."""

    def __init__(self) -> None:
        self._outcomes: list[StageOutcome] = []
        self._lock = threading.Lock()

    def append(self, outcome: StageOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def snapshot(self) -> list[StageOutcome]:
        with self._lock:
            return list(self._outcomes)

    def get(self, stage_id: str) -> StageOutcome | None:
        with self._lock:
            for outcome in self._outcomes:
                if outcome.stage_id == stage_id:
                    return outcome
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)


class StageExecutor:
    """Execute a stage graph through the command runner.

    Args:
        runner: Command runner collaborator.
        verifier: Toolchain verifier; toolchain stages are probed right
            after their last action. ``None`` skips the inline probe.
        image_store: Used to fetch ``from_image`` base layers.
        max_workers: Stages allowed to run at the same time.
        cancel_token: Shared cancellation flag.
        on_outcome: Called with every recorded stage outcome.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        verifier: ToolchainVerifier | None = None,
        image_store: ImageStore | None = None,
        max_workers: int = 1,
        cancel_token: CancelToken | None = None,
        on_outcome: Callable[[StageOutcome], None] | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._runner = runner
        self._verifier = verifier
        self._image_store = image_store
        self._max_workers = max_workers
        self._token = cancel_token or CancelToken()
        self._on_outcome = on_outcome
        self._failure_lock = threading.Lock()
        self._first_failure: ProvisionError | None = None

    @property
    def cancel_token(self) -> CancelToken:
        return self._token

    def execute(
        self,
        graph: StageGraph,
        context: RunContext,
        log: OutcomeLog | None = None,
    ) -> OutcomeLog:
        """Run every stage of ``graph``.

        Returns:
            The outcome log (one entry per stage that started).

        Raises:
            ProvisionError: The first failure; stages after it never start.
        """
        log = log if log is not None else OutcomeLog()
        self._first_failure = None

        if self._max_workers == 1:
            self._execute_sequential(graph, context, log)
        else:
            self._execute_concurrent(graph, context, log)

        if self._first_failure is not None:
            raise self._first_failure
        return log

    # ── Scheduling ───────────────────────────────────────────────

    def _execute_sequential(self, graph: StageGraph, context: RunContext, log: OutcomeLog) -> None:
        for stage in graph:
            if self._token.cancelled:
                self._note_failure(self._cancelled_before(stage.id))
                return
            try:
                self._run_stage(stage, context, log)
            except ProvisionError:
                return

    def _execute_concurrent(self, graph: StageGraph, context: RunContext, log: OutcomeLog) -> None:
        completed: set[str] = set()
        running: dict[Future[StageOutcome], str] = {}

        with ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="stage",
        ) as pool:
            while True:
                if not self._token.cancelled:
                    for sid in graph.ready(completed, set(running.values())):
                        if len(running) >= self._max_workers:
                            break
                        future = pool.submit(
                            contextvars.copy_context().run,
                            self._run_stage, graph.stage(sid), context, log,
                        )
                        running[future] = sid

                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    sid = running.pop(future)
                    try:
                        future.result()
                    except ProvisionError:
                        continue
                    completed.add(sid)

        if self._token.cancelled and self._first_failure is None:
            pending = [sid for sid in graph.order if sid not in completed]
            if pending:
                self._note_failure(self._cancelled_before(pending[0]))

    def _note_failure(self, error: ProvisionError) -> None:
        """Keep the first failure by wall clock and stop everything else."""
        with self._failure_lock:
            if self._first_failure is None:
                self._first_failure = error
                self._token.cancel(f"{error.kind}: {error.message}")

    def _cancelled_before(self, stage_id: str) -> StageExecutionFailed:
        return StageExecutionFailed(
            stage_id, None, "cancelled",
            f"Run cancelled before stage '{stage_id}' started ({self._token.reason})",
        )

    # ── Stage execution ──────────────────────────────────────────

    def _run_stage(self, stage: Stage, context: RunContext, log: OutcomeLog) -> StageOutcome:
        outcome = StageOutcome(
            stage_id=stage.id,
            actions_total=len(stage.actions),
            started_at=_now_iso(),
        )
        start = time.monotonic()
        logger.info("▶ %s (%d action(s))", stage.id, len(stage.actions))

        try:
            if stage.from_image:
                self._fetch_base(stage, context)

            env = context.stage_env(stage)
            for index, action in enumerate(stage.actions):
                if self._token.cancelled:
                    raise StageExecutionFailed(
                        stage.id, index, "cancelled",
                        f"Stage '{stage.id}' cancelled before action {index} "
                        f"({self._token.reason})",
                    )
                result = self._run_action(stage, index, action, context, env)
                outcome.actions_run += 1
                _check_result(stage.id, index, action, result)

            if stage.is_toolchain and self._verifier is not None:
                outcome.verifications = self._verifier.verify(stage, context)

        except ProvisionError as e:
            outcome.status = "failed"
            outcome.error = e.to_dict()
            self._finish(outcome, start, log)
            logger.info("✗ %s → %s", stage.id, e.kind)
            self._note_failure(e)
            raise

        self._finish(outcome, start, log)
        logger.info("✓ %s → ok (%dms)", stage.id, outcome.duration_ms)
        return outcome

    def _fetch_base(self, stage: Stage, context: RunContext) -> None:
        ref = render(stage.from_image or "", context.stage_values(stage))
        if self._image_store is None:
            logger.debug("No image store configured, not fetching %s", ref)
            return
        try:
            layer = self._image_store.fetch(ref)
        except ImageStoreError as e:
            raise StageExecutionFailed(
                stage.id, None, "action_failure",
                f"Cannot fetch base image '{ref}' for stage '{stage.id}': {e.message}",
            ) from e
        logger.debug("Fetched base layer %s → %s", ref, layer.location)

    def _run_action(
        self,
        stage: Stage,
        index: int,
        action: ProvisionAction,
        context: RunContext,
        env: dict[str, str],
    ) -> CommandResult:
        command = context.render_command(action.command, stage)
        timeout = context.action_timeout
        if action.timeout is not None:
            timeout = min(action.timeout, timeout)
        cwd = render(action.cwd, context.stage_values(stage)) if action.cwd else context.workdir

        logger.debug("%s[%d] %s: %s", stage.id, index, action.kind, action.label)
        return self._runner.execute(command, cwd, timeout, env)

    def _finish(self, outcome: StageOutcome, start: float, log: OutcomeLog) -> None:
        outcome.ended_at = _now_iso()
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        log.append(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)


def _check_result(
    stage_id: str,
    index: int,
    action: ProvisionAction,
    result: CommandResult,
) -> None:
    """Turn a failed command result into ``StageExecutionFailed``."""
    if result.timed_out:
        raise StageExecutionFailed(
            stage_id, index, "timeout",
            f"Stage '{stage_id}' action {index} ({action.label}) timed out",
            stderr_tail=tail(result.stderr),
        )
    if result.exit_code != 0:
        raise StageExecutionFailed(
            stage_id, index, "action_failure",
            f"Stage '{stage_id}' action {index} ({action.label}) "
            f"failed (exit {result.exit_code})",
            exit_code=result.exit_code,
            stderr_tail=tail(result.stderr),
        )

"""
Run models — build run states, stage outcomes, and the outcome report.

Outcomes follow the receipt contract: every stage that was planned gets
exactly one outcome (ok, failed, or skipped), so the report always shows
the whole graph, not just what happened to run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunState(StrEnum):
    """Lifecycle of a build run.

    Transitions:
        PENDING → RESOLVING → GRAPH_BUILT → EXECUTING → VERIFYING
                → SMOKE_TESTING → COMPLETED
        any non-terminal state → FAILED
    """

    PENDING = "pending"
    RESOLVING = "resolving"
    GRAPH_BUILT = "graph_built"
    EXECUTING = "executing"
    VERIFYING = "verifying"
    SMOKE_TESTING = "smoke_testing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


# Forward edges only: no state is ever re-entered.
ALLOWED_TRANSITIONS: dict[RunState, tuple[RunState, ...]] = {
    RunState.PENDING: (RunState.RESOLVING,),
    RunState.RESOLVING: (RunState.GRAPH_BUILT,),
    RunState.GRAPH_BUILT: (RunState.EXECUTING,),
    RunState.EXECUTING: (RunState.VERIFYING,),
    RunState.VERIFYING: (RunState.SMOKE_TESTING,),
    RunState.SMOKE_TESTING: (RunState.COMPLETED,),
    RunState.COMPLETED: (),
    RunState.FAILED: (),
}


class VerificationRecord(BaseModel):
    """Result of one toolchain version assertion."""

    component: str
    tool: str = ""
    expected: str
    actual: str = ""
    raw: str = ""                 # probe output before normalization
    ok: bool = False


class StageOutcome(BaseModel):
    """What happened to one stage of the graph."""

    stage_id: str
    status: Literal["ok", "failed", "skipped"] = "ok"
    actions_total: int = 0
    actions_run: int = 0

    started_at: str | None = None
    ended_at: str | None = None
    duration_ms: int = 0

    verifications: list[VerificationRecord] = Field(default_factory=list)
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class SmokeResult(BaseModel):
    """Outcome of the final compile-and-run acceptance gate."""

    variant: str
    ok: bool = False
    exit_code: int | None = None
    duration_ms: int = 0
    stdout_tail: str = ""
    stderr_tail: str = ""


class RunReport(BaseModel):
    """Machine-readable outcome of one build run (one variant)."""

    run_id: str
    spec_name: str = ""
    variant: str = ""
    state: RunState = RunState.PENDING

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str | None = None
    duration_ms: int = 0

    versions: dict[str, str] = Field(default_factory=dict)
    order: list[str] = Field(default_factory=list)
    stages: list[StageOutcome] = Field(default_factory=list)
    smoke_test: SmokeResult | None = None

    error: dict[str, Any] | None = None
    published: bool = False
    publish_error: str | None = None

    @property
    def completed(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def ok(self) -> bool:
        """Completed and published (or nothing needed publishing)."""
        return self.completed and self.publish_error is None

    @property
    def failed_stage(self) -> StageOutcome | None:
        for outcome in self.stages:
            if outcome.failed:
                return outcome
        return None

    def stage(self, stage_id: str) -> StageOutcome | None:
        for outcome in self.stages:
            if outcome.stage_id == stage_id:
                return outcome
        return None

"""
Error taxonomy — every way a build run can fail.

All provisioning errors are terminal for the current BuildRun. The core
never retries; the operator decides what to do with the outcome report,
which carries ``to_dict()`` of the error that stopped the run.
"""

from __future__ import annotations

import re
from typing import Any, Literal

FailureCause = Literal["action_failure", "timeout", "cancelled"]

# stderr fragments that usually point at an upstream hiccup rather than a
# broken specification. Advisory only: nothing is retried automatically.
_TRANSIENT_PATTERNS = (
    r"temporary failure (in name resolution|resolving)",
    r"could not resolve host",
    r"connection (timed out|reset|refused)",
    r"network is unreachable",
    r"failed to fetch",
    r"\b50[234]\b",
    r"could not get lock",
    r"unable to acquire the dpkg frontend lock",
    r"hash sum mismatch",
)


def looks_transient(stderr: str) -> bool:
    """Guess whether a failure was caused by a transient upstream problem."""
    if not stderr:
        return False
    text = stderr.lower()
    return any(re.search(p, text) for p in _TRANSIENT_PATTERNS)


class ProvisionError(Exception):
    """Base class for all errors that terminate a build run."""

    kind: str = "provision_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}


class InvalidVersionSpec(ProvisionError):
    """A requested component version is empty, malformed, or out of range."""

    kind = "invalid_version_spec"

    def __init__(self, component: str, value: Any, reason: str):
        super().__init__(
            f"Invalid version for '{component}': {value!r} ({reason})",
            component=component,
            value=str(value) if value is not None else None,
            reason=reason,
        )
        self.component = component


class CyclicDependency(ProvisionError):
    kind = "cyclic_dependency"

    def __init__(self, cycle: list[str]):
        path = " → ".join(cycle + cycle[:1])
        super().__init__(f"Dependency cycle detected: {path}", cycle=cycle)
        self.cycle = cycle


class UnknownDependency(ProvisionError):
    kind = "unknown_dependency"

    def __init__(self, stage_id: str, dependency: str):
        super().__init__(
            f"Stage '{stage_id}' depends on unknown stage '{dependency}'",
            stage_id=stage_id,
            dependency=dependency,
        )
        self.stage_id = stage_id
        self.dependency = dependency


class DuplicateStage(ProvisionError):
    kind = "duplicate_stage"

    def __init__(self, stage_id: str):
        super().__init__(f"Duplicate stage ID: {stage_id}", stage_id=stage_id)
        self.stage_id = stage_id


class StageExecutionFailed(ProvisionError):
    """A provisioning action failed, timed out, or the run was cancelled.

    ``action_index`` is ``None`` when the stage failed before any action
    ran (e.g. the base image could not be fetched, or cancellation arrived
    before the first action).
    """

    kind = "stage_execution_failed"

    def __init__(
        self,
        stage_id: str,
        action_index: int | None,
        cause: FailureCause,
        message: str,
        *,
        exit_code: int | None = None,
        stderr_tail: str = "",
    ):
        super().__init__(
            message,
            stage_id=stage_id,
            action_index=action_index,
            cause=cause,
            exit_code=exit_code,
            stderr_tail=stderr_tail,
            transient=cause == "action_failure" and looks_transient(stderr_tail),
        )
        self.stage_id = stage_id
        self.action_index = action_index
        self.cause = cause
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail


class VersionMismatch(ProvisionError):
    kind = "version_mismatch"

    def __init__(self, component: str, expected: str, actual: str, *, tool: str = ""):
        super().__init__(
            f"'{component}' reports major version '{actual}', "
            f"which does not match expected version '{expected}'",
            component=component,
            expected=expected,
            actual=actual,
            tool=tool,
        )
        self.component = component
        self.expected = expected
        self.actual = actual


class ProbeUnavailable(ProvisionError):
    kind = "probe_unavailable"

    def __init__(self, component: str, *, tool: str = "", detail: str = ""):
        super().__init__(
            f"Cannot probe version of '{component}'"
            + (f" via {tool}" if tool else "")
            + (f": {detail}" if detail else ""),
            component=component,
            tool=tool,
            detail=detail,
        )
        self.component = component


class SmokeTestFailed(ProvisionError):
    kind = "smoke_test_failed"

    def __init__(
        self,
        variant: str,
        reason: str,
        *,
        exit_code: int | None = None,
        stderr_tail: str = "",
    ):
        super().__init__(
            f"Smoke test failed for variant '{variant}': {reason}",
            variant=variant,
            exit_code=exit_code,
            stderr_tail=stderr_tail,
        )
        self.variant = variant


class ImageStoreError(ProvisionError):
    """The image store could not fetch a base layer or publish artifacts."""

    kind = "image_store_error"

"""Engine — version resolution, stage graph, execution, and verification."""

from provisioner.core.engine.build_run import BuildRun, Collaborators, RunSettings
from provisioner.core.engine.executor import CancelToken, OutcomeLog, StageExecutor
from provisioner.core.engine.graph import StageGraph, build_stage_graph
from provisioner.core.engine.smoke import SmokeTestRunner
from provisioner.core.engine.verifier import ToolchainVerifier, VerificationAssertion
from provisioner.core.engine.versions import major_token, resolve_versions

__all__ = [
    "BuildRun",
    "CancelToken",
    "Collaborators",
    "OutcomeLog",
    "RunSettings",
    "SmokeTestRunner",
    "StageExecutor",
    "StageGraph",
    "ToolchainVerifier",
    "VerificationAssertion",
    "build_stage_graph",
    "major_token",
    "resolve_versions",
]

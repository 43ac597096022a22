"""
Domain models — Pydantic types for the provisioner.

All models are re-exported here for convenient access:

    from provisioner.core.models import BuildSpec, Stage, RunReport
"""

from provisioner.core.models.build_spec import (
    ArtifactRef,
    BaseOS,
    BuildSpec,
    Compiler,
    Defaults,
    ProvisionAction,
    SmokeTest,
    Stage,
    Toolchain,
    ToolchainTool,
    Variant,
    VersionConstraint,
)
from provisioner.core.models.run import (
    RunReport,
    RunState,
    SmokeResult,
    StageOutcome,
    VerificationRecord,
)
from provisioner.core.models.version import ComponentVersion

__all__ = [
    "ArtifactRef",
    "BaseOS",
    # build_spec.py
    "BuildSpec",
    "Compiler",
    # version.py
    "ComponentVersion",
    "Defaults",
    "ProvisionAction",
    # run.py
    "RunReport",
    "RunState",
    "SmokeResult",
    "SmokeTest",
    "Stage",
    "StageOutcome",
    "Toolchain",
    "ToolchainTool",
    "Variant",
    "VerificationRecord",
    "VersionConstraint",
]

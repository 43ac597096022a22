"""
Check use case — validate a build spec and plan every variant.

Loads the spec, resolves each variant's versions, and builds its stage
graph without executing anything. Used by ``provisioner check`` and
``provisioner plan``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.core.config.loader import ConfigError, find_spec_file, load_build_spec, spec_root
from provisioner.core.engine.graph import build_stage_graph
from provisioner.core.engine.versions import resolve_versions
from provisioner.core.errors import ProvisionError
from provisioner.core.models.build_spec import BuildSpec, Variant

logger = logging.getLogger(__name__)


@dataclass
class VariantPlan:
    """The planned stage order of one variant."""

    name: str
    order: list[str] = field(default_factory=list)
    levels: list[list[str]] = field(default_factory=list)
    actions: dict[str, int] = field(default_factory=dict)
    toolchain_stages: list[str] = field(default_factory=list)
    versions: dict[str, str] = field(default_factory=dict)
    error: dict | None = None

    @property
    def valid(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        result: dict = {"name": self.name, "valid": self.valid}
        if self.error:
            result["error"] = self.error
            return result
        result["order"] = self.order
        result["levels"] = self.levels
        result["actions"] = self.actions
        result["toolchain_stages"] = self.toolchain_stages
        result["versions"] = self.versions
        return result


@dataclass
class CheckResult:
    """Result of checking a build spec."""

    valid: bool = False
    spec: BuildSpec | None = None
    spec_path: Path | None = None
    plans: list[VariantPlan] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "spec": self.spec.name if self.spec else None,
            "spec_path": str(self.spec_path) if self.spec_path else None,
            "variants": [p.to_dict() for p in self.plans],
            "errors": self.errors,
            "warnings": self.warnings,
        }


def plan_variant(spec: BuildSpec, variant: Variant | None) -> VariantPlan:
    """Resolve versions and order stages for one variant; never raises."""
    plan = VariantPlan(name=variant.name if variant else spec.name)
    try:
        versions = resolve_versions(spec.requested_versions(variant), spec.constraints)
        graph = build_stage_graph(spec.stages_for(variant))
    except ProvisionError as e:
        plan.error = e.to_dict()
        return plan

    plan.versions = {n: v.effective for n, v in versions.items()}
    plan.order = list(graph.order)
    plan.levels = graph.levels()
    plan.actions = {s.id: len(s.actions) for s in graph}
    plan.toolchain_stages = [s.id for s in graph if s.is_toolchain]
    return plan


def check_spec(config_path: Path | None = None) -> CheckResult:
    """Validate a build spec and plan each of its variants.

    Args:
        config_path: Optional explicit path to buildspec.yml.

    Returns:
        CheckResult with per-variant plans, errors, and warnings.
    """
    result = CheckResult()

    if config_path is None:
        config_path = find_spec_file()
    result.spec_path = config_path

    try:
        spec = load_build_spec(config_path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result
    result.spec = spec

    variants: list[Variant | None] = list(spec.variants) or [None]
    root = spec_root(config_path) if config_path else Path.cwd()

    for variant in variants:
        plan = plan_variant(spec, variant)
        result.plans.append(plan)
        if plan.error:
            result.errors.append(f"{plan.name}: {plan.error['message']}")
            continue

        for stage in spec.stages_for(variant):
            if stage.toolchain and stage.toolchain.component not in plan.versions:
                result.errors.append(
                    f"{plan.name}: stage '{stage.id}' installs "
                    f"'{stage.toolchain.component}' but no version is requested"
                )
            if not stage.actions:
                result.warnings.append(f"{plan.name}: stage '{stage.id}' has no actions")

        if not plan.toolchain_stages:
            result.warnings.append(f"{plan.name}: no toolchain-producing stage, nothing is verified")

        if variant is not None and variant.smoke_test is not None:
            smoke_path = Path(variant.smoke_test.path)
            if not smoke_path.is_absolute():
                smoke_path = root / smoke_path
            if not smoke_path.is_dir():
                result.warnings.append(f"{plan.name}: smoke test directory not found: {smoke_path}")
        else:
            result.warnings.append(f"{plan.name}: no smoke test declared")

    result.valid = not result.errors
    logger.debug("Checked %s: %d error(s), %d warning(s)", spec.name, len(result.errors), len(result.warnings))
    return result

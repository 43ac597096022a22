"""
Build use case — provision every selected variant of a build spec.

This is the top-level orchestrator: it loads the spec, wires the
collaborators, drives one BuildRun per variant, and persists the
outcome report and the audit ledger. The full vertical slice from
``provisioner build`` to an audited, reported result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from provisioner.adapters.mock import MockCommandRunner
from provisioner.adapters.probe import CommandVersionProbe, StaticVersionProbe
from provisioner.adapters.shell.command import SubprocessCommandRunner
from provisioner.adapters.store import InMemoryImageStore, LocalImageStore
from provisioner.core.config.loader import ConfigError, find_spec_file, load_build_spec, spec_root
from provisioner.core.engine.build_run import BuildRun, Collaborators, RunSettings, generate_run_id
from provisioner.core.engine.context import RunContext, render
from provisioner.core.engine.versions import resolve_versions
from provisioner.core.errors import ProvisionError
from provisioner.core.models.build_spec import BuildSpec, Variant
from provisioner.core.models.run import RunReport
from provisioner.core.persistence.audit import AuditEntry, AuditWriter
from provisioner.core.persistence.report import (
    DEFAULT_STATE_DIR,
    BuildReport,
    default_report_path,
    save_report,
)

logger = logging.getLogger(__name__)

CollaboratorFactory = Callable[[BuildSpec, Variant | None, str], Collaborators]


@dataclass
class BuildResult:
    """Result of a ``provisioner build`` invocation."""

    report: BuildReport | None = None
    report_path: Path | None = None
    spec: BuildSpec | None = None
    spec_path: Path | None = None
    error: str | None = None
    runs: list[RunReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.report is not None and self.report.ok

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["spec"] = self.spec.name if self.spec else ""
        result["spec_path"] = str(self.spec_path)
        result["report_path"] = str(self.report_path) if self.report_path else None
        if self.report:
            result["report"] = self.report.to_dict()
        return result


# ── Collaborators ────────────────────────────────────────────────


def host_collaborators(root: Path) -> CollaboratorFactory:
    """Real collaborators: subprocesses on this host, a local layer store.

    Every run gets its own store directory so concurrent runs never
    publish into each other's manifests.
    """
    runner = SubprocessCommandRunner()
    probe = CommandVersionProbe(runner)

    def factory(spec: BuildSpec, variant: Variant | None, run_id: str) -> Collaborators:
        store = LocalImageStore(root / DEFAULT_STATE_DIR / "images" / run_id)
        return Collaborators(runner=runner, probe=probe, image_store=store)

    return factory


def mock_collaborators(spec: BuildSpec, variant: Variant | None, run_id: str) -> Collaborators:
    """Simulated collaborators: every command succeeds, every tool reports
    exactly the version that was requested for its component."""
    return Collaborators(
        runner=MockCommandRunner(),
        probe=StaticVersionProbe(_expected_tool_versions(spec, variant)),
        image_store=InMemoryImageStore(),
    )


def _expected_tool_versions(spec: BuildSpec, variant: Variant | None) -> dict[str, str]:
    try:
        versions = resolve_versions(spec.requested_versions(variant), spec.constraints)
    except ProvisionError:
        return {}

    context = RunContext(versions=versions)
    table: dict[str, str] = {}
    for stage in spec.stages_for(variant):
        toolchain = stage.toolchain
        if toolchain is None or toolchain.component not in versions:
            continue
        version = versions[toolchain.component].effective
        values = context.stage_values(stage)
        paths = [render(t.path, values) for t in toolchain.tools] or [toolchain.component]
        for path in paths:
            table[path] = version
    return table


# ── Build ────────────────────────────────────────────────────────


def select_variants(spec: BuildSpec, names: list[str] | None) -> list[Variant | None]:
    """The variants to build, in declaration order.

    A spec without variants builds its shared stages once.

    Raises:
        ConfigError: If a requested variant is not declared.
    """
    if not spec.variants:
        if names:
            raise ConfigError(f"Spec '{spec.name}' declares no variants; cannot select {', '.join(names)}")
        return [None]

    if not names:
        return list(spec.variants)

    unknown = [n for n in names if spec.get_variant(n) is None]
    if unknown:
        raise ConfigError(
            f"Unknown variant(s): {', '.join(unknown)}. "
            f"Declared: {', '.join(spec.variant_names)}"
        )
    return [v for v in spec.variants if v.name in names]


def run_build(
    config_path: Path | None = None,
    variants: list[str] | None = None,
    targets: list[str] | None = None,
    report_path: Path | None = None,
    action_timeout: float | None = None,
    max_workers: int = 1,
    parallel_variants: bool = False,
    mock_mode: bool = False,
    collaborators: CollaboratorFactory | None = None,
    audit: bool = True,
) -> BuildResult:
    """Build the selected variants of a spec and write the outcome report.

    Args:
        config_path: Optional explicit path to buildspec.yml.
        variants: Variant names to build. None = all.
        targets: Stage IDs to build (with their dependencies). None = all.
        report_path: Where to write the report (default: .provisioner/report.json).
        action_timeout: Caller cap on every action, in seconds.
        max_workers: Independent stages run concurrently up to this many.
        parallel_variants: If True, run the variants concurrently.
        mock_mode: If True, simulate every command and probe.
        collaborators: Optional factory overriding the collaborator wiring.
        audit: If True, append one audit ledger entry per run.

    Returns:
        BuildResult with the report. ``error`` is set only when nothing
        could be built at all (missing or invalid spec).
    """
    result = BuildResult()

    # ── Load spec ────────────────────────────────────────────────
    try:
        if config_path is None:
            config_path = find_spec_file()
        if config_path is None:
            result.error = "No buildspec.yml found."
            return result

        spec = load_build_spec(config_path)
        selected = select_variants(spec, variants)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.spec = spec
    result.spec_path = config_path
    root = spec_root(config_path)

    # ── Wire collaborators ───────────────────────────────────────
    if collaborators is None:
        collaborators = mock_collaborators if mock_mode else host_collaborators(root)

    settings = RunSettings(
        action_timeout=action_timeout,
        base_dir=root,
        max_workers=max(1, max_workers),
        targets=list(targets or []),
    )

    builds = []
    for variant in selected:
        run_id = generate_run_id()
        builds.append(BuildRun(spec, variant, collaborators(spec, variant, run_id), settings, run_id=run_id))

    logger.info(
        "Building %s: %d variant(s)%s",
        spec.name, len(builds), " (mock)" if mock_mode else "",
    )

    # ── Execute ──────────────────────────────────────────────────
    if parallel_variants and len(builds) > 1:
        with ThreadPoolExecutor(max_workers=len(builds), thread_name_prefix="variant") as pool:
            reports = list(pool.map(lambda b: b.run(), builds))
    else:
        reports = [b.run() for b in builds]
    result.runs = reports

    # ── Persist ──────────────────────────────────────────────────
    report = BuildReport(spec=spec.name, spec_path=str(config_path), runs=reports)
    result.report = report
    result.report_path = report_path or default_report_path(root)
    try:
        save_report(report, result.report_path)
    except OSError as e:
        logger.error("Could not write report: %s", e)
        result.report_path = None

    if audit:
        writer = AuditWriter(spec_root=root)
        for run in reports:
            writer.write(AuditEntry.from_report(run, mock=mock_mode, targets=settings.targets))

    logger.info("Build %s: %s", spec.name, report.status)
    return result

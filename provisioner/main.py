"""
Toolchain Provisioner — CLI entrypoint.

Usage:
    python -m provisioner.main --help
    provisioner check
    provisioner build --variant gcc-13
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from provisioner import __version__
from provisioner.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


@click.group()
@click.version_option(version=__version__, prog_name="provisioner")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--spec",
    "-s",
    "spec_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to buildspec.yml (default: auto-detect).",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    envvar="PROVISIONER_LOG_FILE",
    default=None,
    help="Also write a detailed log to this file (env: PROVISIONER_LOG_FILE).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    spec_path: str | None,
    log_file: str | None,
) -> None:
    """Toolchain Provisioner — build and verify reproducible toolchain images."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["spec_path"] = Path(spec_path) if spec_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("PROVISIONER_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=log_file,
        log_file_level=os.environ.get("PROVISIONER_LOG_FILE_LEVEL", "DEBUG"),
    )


@cli.command()
@click.option("--variant", "variants", multiple=True, help="Build only this variant (repeatable).")
@click.option("--stage", "stages", multiple=True, help="Build only this stage and its dependencies.")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Where to write the outcome report (default: .provisioner/report.json).",
)
@click.option("--timeout", type=float, default=None, help="Cap every action at this many seconds.")
@click.option("--jobs", "-j", type=click.IntRange(min=1), default=1, help="Run up to N independent stages at once.")
@click.option("--parallel-variants", is_flag=True, help="Build the variants concurrently.")
@click.option("--mock", is_flag=True, help="Simulate every command (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def build(
    ctx: click.Context,
    variants: tuple[str, ...],
    stages: tuple[str, ...],
    report_path: str | None,
    timeout: float | None,
    jobs: int,
    parallel_variants: bool,
    mock: bool,
    as_json: bool,
) -> None:
    """Provision, verify, and smoke-test the spec's variants.

    Examples:

        provisioner build

        provisioner build --variant gcc-13 --variant clang-18

        provisioner build --stage conan --mock
    """
    from provisioner.core.use_cases.build import run_build

    result = run_build(
        config_path=ctx.obj.get("spec_path"),
        variants=list(variants) if variants else None,
        targets=list(stages) if stages else None,
        report_path=Path(report_path) if report_path else None,
        action_timeout=timeout,
        max_workers=jobs,
        parallel_variants=parallel_variants,
        mock_mode=mock,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    report = result.report
    assert report is not None
    assert result.spec is not None

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}build — {result.spec.name}", fg="cyan", bold=True)
    click.echo(f"   Variants: {len(report.runs)}")

    for run in report.runs:
        click.echo()
        versions = ", ".join(f"{k} {v}" for k, v in run.versions.items())
        click.secho(f"   {run.variant}", fg="white", bold=True, nl=False)
        click.echo(f"  ({run.run_id})")
        if versions and not ctx.obj.get("quiet"):
            click.echo(f"     versions: {versions}")

        for outcome in run.stages:
            timing = f" ({outcome.duration_ms}ms)" if outcome.duration_ms else ""
            if outcome.ok:
                click.secho(f"     ✓ {outcome.stage_id}", fg="green", nl=False)
                click.echo(timing)
                for record in outcome.verifications:
                    click.echo(f"       │ {record.tool}: {record.raw}")
            elif outcome.failed:
                click.secho(f"     ✗ {outcome.stage_id}", fg="red", nl=False)
                click.echo(timing)
            else:
                click.secho(f"     ⊘ {outcome.stage_id} ", fg="yellow", nl=False)
                click.echo("(skipped)")

        if run.smoke_test is not None:
            marker, color = ("✓", "green") if run.smoke_test.ok else ("✗", "red")
            click.secho(f"     {marker} smoke test", fg=color)

        if run.error:
            click.secho(f"     {run.error['kind']}: {run.error['message']}", fg="red")
            stderr = run.error.get("stderr_tail")
            if stderr:
                for line in stderr.strip().split("\n")[-5:]:
                    click.echo(f"       │ {line}")
        elif run.publish_error:
            click.secho(f"     publish failed: {run.publish_error}", fg="red")
        elif run.published:
            click.secho("     📦 published", fg="cyan")

    click.echo()
    click.secho(
        f"   Result: {sum(1 for r in report.runs if r.ok)}/{len(report.runs)} variant(s) ok",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    if result.report_path:
        click.echo(f"   Report: {result.report_path}")

    if not result.ok:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Validate buildspec.yml and every variant's stage graph."""
    from provisioner.core.use_cases.check import check_spec

    result = check_spec(config_path=ctx.obj.get("spec_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.spec is not None
        click.secho("✅ Build spec is valid", fg="green", bold=True)
        click.echo(f"   Spec: {result.spec.name}")
        for plan in result.plans:
            click.echo(f"   {plan.name}: {' → '.join(plan.order)}")
    else:
        click.secho("❌ Build spec errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--variant", "variants", multiple=True, help="Show only this variant (repeatable).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def plan(ctx: click.Context, variants: tuple[str, ...], as_json: bool) -> None:
    """Show each variant's stage order without executing anything."""
    from provisioner.core.config.loader import ConfigError
    from provisioner.core.use_cases.build import select_variants
    from provisioner.core.use_cases.check import check_spec

    result = check_spec(config_path=ctx.obj.get("spec_path"))

    if variants and result.spec is not None:
        try:
            select_variants(result.spec, list(variants))
        except ConfigError as e:
            if as_json:
                click.echo(json.dumps({"error": str(e)}, indent=2))
            else:
                click.secho(f"❌ {e}", fg="red")
            sys.exit(1)

    plans = [p for p in result.plans if not variants or p.name in variants]

    if as_json:
        click.echo(json.dumps([p.to_dict() for p in plans], indent=2))
        sys.exit(0 if all(p.valid for p in plans) and result.spec else 1)
        return

    if result.spec is None:
        for err in result.errors:
            click.secho(f"❌ {err}", fg="red")
        sys.exit(1)

    click.secho(f"\n📋 {result.spec.name}", fg="cyan", bold=True)
    for p in plans:
        click.echo()
        if not p.valid:
            assert p.error is not None
            click.secho(f"   ✗ {p.name}: {p.error['kind']}: {p.error['message']}", fg="red")
            continue

        click.secho(f"   {p.name}", fg="white", bold=True)
        for step, stage_id in enumerate(p.order, start=1):
            marker = " 🔧" if stage_id in p.toolchain_stages else ""
            click.echo(f"     {step}. {stage_id} ({p.actions[stage_id]} action(s)){marker}")

    click.echo()
    if not all(p.valid for p in plans):
        sys.exit(1)


@cli.command()
@click.option("-n", "count", type=click.IntRange(min=1), default=20, help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent build runs from the audit ledger."""
    from provisioner.core.config.loader import find_spec_file, spec_root
    from provisioner.core.persistence.audit import AuditWriter

    spec_path: Path | None = ctx.obj.get("spec_path") or find_spec_file()
    root = spec_root(spec_path) if spec_path else Path.cwd()
    entries = AuditWriter(spec_root=root).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.secho("No build runs recorded yet.", fg="yellow")
        return

    for entry in entries:
        marker, color = ("✓", "green") if entry.state == "completed" else ("✗", "red")
        click.secho(f"   {marker} {entry.variant}", fg=color, nl=False)
        click.echo(f"  {entry.timestamp}  {entry.run_id}  {entry.duration_ms}ms")
        if entry.error:
            click.echo(f"     │ {entry.error_kind}: {entry.error}")


if __name__ == "__main__":
    cli()

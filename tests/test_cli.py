"""
Tests for CLI commands — build, check, plan, history, and global options.
"""

import json
import textwrap
from pathlib import Path

from click.testing import CliRunner
from conftest import GCC_SPEC

from provisioner.main import cli


def _spec(tmp_path: Path, content: str = GCC_SPEC) -> Path:
    path = tmp_path / "buildspec.yml"
    path.write_text(textwrap.dedent(content))
    return path


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Toolchain Provisioner" in result.output
        for command in ("build", "check", "plan", "history"):
            assert command in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_spec_autodetected(self, tmp_path: Path, monkeypatch, smoke_dir):
        _spec(tmp_path)
        monkeypatch.chdir(tmp_path)
        result = CliRunner().invoke(cli, ["check"])
        assert result.exit_code == 0
        assert "gcc-scenario" in result.output


class TestBuildCommand:
    def test_mock_build_succeeds(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "build", "--mock"])
        assert result.exit_code == 0, result.output
        assert "[mock] build" in result.output
        assert "✓ base" in result.output
        assert "✓ verify-gcc" in result.output
        assert "1/1 variant(s) ok" in result.output
        assert (tmp_path / ".provisioner" / "report.json").is_file()

    def test_json_output(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["-s", str(spec), "build", "--mock", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["report"]["status"] == "ok"
        assert data["report"]["runs"][0]["order"] == ["base", "gcc", "verify-gcc"]

    def test_failure_exits_nonzero(self, tmp_path: Path):
        # no smoke directory: the acceptance gate fails
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "build", "--mock"])
        assert result.exit_code == 1
        assert "smoke_test_failed" in result.output

    def test_failure_json(self, tmp_path: Path):
        spec = _spec(tmp_path)
        report = tmp_path / "custom.json"
        result = CliRunner().invoke(
            cli, ["--spec", str(spec), "build", "--mock", "--json", "--report", str(report)]
        )
        assert result.exit_code == 1
        data = json.loads(report.read_text())
        assert data["status"] == "failed"
        assert data["runs"][0]["error"]["kind"] == "smoke_test_failed"

    def test_stage_selection(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(
            cli, ["--spec", str(spec), "build", "--mock", "--stage", "gcc", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["report"]["runs"][0]["order"] == ["base", "gcc"]

    def test_unknown_variant(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "build", "--mock", "--variant", "msvc"])
        assert result.exit_code == 1
        assert "Unknown variant" in result.output

    def test_missing_spec(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = CliRunner().invoke(cli, ["build", "--mock"])
        assert result.exit_code == 1
        assert "No buildspec.yml" in result.output

    def test_jobs_must_be_positive(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "build", "--jobs", "0"])
        assert result.exit_code == 2


class TestCheckCommand:
    def test_valid(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "check"])
        assert result.exit_code == 0
        assert "Build spec is valid" in result.output
        assert "base → gcc → verify-gcc" in result.output

    def test_cycle(self, tmp_path: Path):
        spec = _spec(tmp_path, """\
            name: cyclic
            stages:
              - {id: a, depends_on: [c], actions: [{command: "true"}]}
              - {id: b, depends_on: [a], actions: [{command: "true"}]}
              - {id: c, depends_on: [b], actions: [{command: "true"}]}
        """)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "check"])
        assert result.exit_code == 1
        assert "Dependency cycle detected" in result.output

    def test_json(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "check", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["valid"] is True
        assert data["variants"][0]["order"] == ["base", "gcc", "verify-gcc"]


class TestPlanCommand:
    def test_plan(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "plan"])
        assert result.exit_code == 0
        assert "1. base (1 action(s))" in result.output
        assert "2. gcc (1 action(s)) 🔧" in result.output

    def test_plan_json_variant_filter(self, sample_spec_path: Path):
        result = CliRunner().invoke(
            cli, ["--spec", str(sample_spec_path), "plan", "--variant", "clang-18", "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [p["name"] for p in data] == ["clang-18"]
        assert data[0]["order"] == ["base", "python-tools", "clang", "conan-profile"]

    def test_unknown_variant(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "plan", "--variant", "nosuch"])
        assert result.exit_code == 1
        assert "Unknown variant(s): nosuch" in result.output

    def test_unknown_variant_json(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "plan", "--variant", "nosuch", "--json"])
        assert result.exit_code == 1
        assert "nosuch" in json.loads(result.output)["error"]


class TestHistoryCommand:
    def test_empty(self, tmp_path: Path):
        spec = _spec(tmp_path)
        result = CliRunner().invoke(cli, ["--spec", str(spec), "history"])
        assert result.exit_code == 0
        assert "No build runs recorded yet" in result.output

    def test_after_build(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        runner = CliRunner()
        runner.invoke(cli, ["--spec", str(spec), "build", "--mock"])
        runner.invoke(cli, ["--spec", str(spec), "build", "--mock"])

        result = runner.invoke(cli, ["--spec", str(spec), "history", "--json"])
        assert result.exit_code == 0
        entries = json.loads(result.output)
        assert len(entries) == 2
        assert entries[0]["state"] == "completed"

        result = runner.invoke(cli, ["--spec", str(spec), "history", "-n", "1"])
        assert "✓ gcc-13" in result.output

    def test_count_must_be_positive(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        runner = CliRunner()
        runner.invoke(cli, ["--spec", str(spec), "build", "--mock"])
        result = runner.invoke(cli, ["--spec", str(spec), "history", "-n", "0"])
        assert result.exit_code == 2
        assert "gcc-13" not in result.output


class TestLogFileOption:
    def test_log_file_written(self, tmp_path: Path, smoke_dir):
        spec = _spec(tmp_path)
        log_file = tmp_path / "build.log"
        result = CliRunner().invoke(
            cli, ["--spec", str(spec), "--log-file", str(log_file), "build", "--mock"]
        )
        assert result.exit_code == 0
        text = log_file.read_text()
        assert "[gcc-13]" in text
        assert "▶ gcc" in text

    def test_log_file_from_env(self, tmp_path: Path):
        spec = _spec(tmp_path)
        log_file = tmp_path / "env.log"
        result = CliRunner().invoke(
            cli, ["--spec", str(spec), "plan"], env={"PROVISIONER_LOG_FILE": str(log_file)}
        )
        assert result.exit_code == 0
        assert log_file.exists()

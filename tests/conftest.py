"""
Shared test fixtures and configuration.
"""

import stat
import textwrap
from pathlib import Path

import pytest

from provisioner.adapters.mock import MockCommandRunner
from provisioner.core.models.build_spec import Stage


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def sample_spec_path(project_root: Path) -> Path:
    """The Debian example spec shipped with the repo."""
    return project_root / "specs" / "debian" / "buildspec.yml"


@pytest.fixture
def mock_runner() -> MockCommandRunner:
    return MockCommandRunner()


@pytest.fixture
def smoke_dir(tmp_path: Path) -> Path:
    """A minimal smoke-test program directory with an executable run.sh."""
    path = tmp_path / "smoke"
    path.mkdir()
    script = path / "run.sh"
    script.write_text("#!/bin/sh\necho smoke ok\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    (path / "main.cpp").write_text("int main() { return 0; }\n")
    return path


@pytest.fixture
def write_spec(tmp_path: Path):
    """Write a buildspec.yml into tmp_path and return its path."""

    def _write(content: str, name: str = "buildspec.yml") -> Path:
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        return path

    return _write


def make_stage(stage_id: str, *deps: str, commands: tuple[str, ...] = (), **kwargs) -> Stage:
    """Shorthand for a stage with shell-string actions."""
    if not commands:
        commands = (f"echo {stage_id}",)
    return Stage(
        id=stage_id,
        depends_on=list(deps),
        actions=[{"command": c} for c in commands],
        **kwargs,
    )


# The gcc scenario: base → gcc → verify-gcc, GCC 13 requested.
GCC_SPEC = """\
    name: gcc-scenario
    base_os:
      name: debian
      version: "12"
    stages:
      - id: base
        actions:
          - {kind: install, command: "apt-get update"}
    variants:
      - name: gcc-13
        compiler: {family: gcc, version: "13"}
        stages:
          - id: gcc
            depends_on: [base]
            env: {CC: /usr/bin/gcc, CXX: /usr/bin/g++}
            toolchain:
              component: gcc
              tools:
                - {name: cc, path: "${CC}"}
                - {name: cxx, path: "${CXX}"}
            actions:
              - {kind: install, command: "install-gcc ${gcc}"}
            produces:
              - {name: gcc-layer, path: /usr/local}
          - id: verify-gcc
            depends_on: [gcc]
            actions:
              - {kind: verify, command: "verify-gcc --cc ${CC}"}
            env: {CC: /usr/bin/gcc}
        smoke_test: {path: smoke}
"""

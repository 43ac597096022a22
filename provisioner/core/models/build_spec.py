"""
Build specification model — the declarative input of a build.

Loaded from buildspec.yml, this is the only persisted configuration:
the base OS, compiler family and version per variant, auxiliary tool
versions, and the stage graph declaration.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def _as_version_text(value: Any) -> Any:
    """YAML turns ``13`` into an int and ``2.0`` into a float; keep text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


class ArtifactRef(BaseModel):
    """An artifact a stage produces (a directory, a layer, a profile)."""

    name: str
    path: str = ""


class ProvisionAction(BaseModel):
    """A single side-effecting step inside a stage.

    ``command`` is either a shell string (run through bash with
    ``errexit``/``pipefail``) or an argv list (run directly).
    """

    kind: Literal["install", "copy", "configure", "verify", "run"] = "run"
    command: str | list[str]
    description: str = ""
    cwd: str | None = None
    timeout: float | None = None  # seconds; None = run default

    @property
    def label(self) -> str:
        if self.description:
            return self.description
        if isinstance(self.command, list):
            return " ".join(self.command)
        return self.command.splitlines()[0] if self.command else ""


class ToolchainTool(BaseModel):
    """A compiler driver whose self-reported version is checked."""

    name: str             # e.g. "cc", "cxx"
    path: str             # e.g. "/usr/bin/gcc" (may use ${...} placeholders)


class Toolchain(BaseModel):
    """Marks a stage as toolchain-producing.

    ``component`` names the resolved component whose major version every
    tool must report (e.g. ``gcc`` or ``clang``).
    """

    component: str
    tools: list[ToolchainTool] = Field(default_factory=list)
    probe_args: list[str] = Field(default_factory=lambda: ["-dumpversion"])


class Stage(BaseModel):
    """A named unit of provisioning work with declared dependencies."""

    id: str
    description: str = ""
    depends_on: list[str] = Field(default_factory=list)
    from_image: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    actions: list[ProvisionAction] = Field(default_factory=list)
    produces: list[ArtifactRef] = Field(default_factory=list)
    toolchain: Toolchain | None = None

    @property
    def is_toolchain(self) -> bool:
        return self.toolchain is not None


class SmokeTest(BaseModel):
    """A minimal program compiled and run as the final acceptance gate."""

    path: str                    # directory holding the program
    script: str = "./run.sh"     # build/run script, executed inside the copy
    timeout: float | None = None


class Compiler(BaseModel):
    family: str                  # "gcc", "clang", ...
    version: str

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        return _as_version_text(value)


class VersionConstraint(BaseModel):
    """A declared compatibility rule for a component version."""

    type: Literal["exact", "gte", "major", "semver_compat", "minor_range"] = "gte"
    reference: str
    range: int = 1

    @field_validator("reference", mode="before")
    @classmethod
    def _reference_as_text(cls, value: Any) -> Any:
        return _as_version_text(value)


class BaseOS(BaseModel):
    name: str                    # component name, e.g. "debian"
    version: str

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        return _as_version_text(value)


class Defaults(BaseModel):
    """Timeouts and paths shared by every run of this specification."""

    action_timeout: float = 1800.0
    probe_timeout: float = 30.0
    smoke_timeout: float = 600.0
    workdir: str = "."


class Variant(BaseModel):
    """One image flavour (e.g. GCC 13 or Clang 18) built as its own run."""

    name: str
    description: str = ""
    compiler: Compiler | None = None
    components: dict[str, str] = Field(default_factory=dict)
    stages: list[Stage] = Field(default_factory=list)
    smoke_test: SmokeTest | None = None

    @field_validator("components", mode="before")
    @classmethod
    def _components_as_text(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _as_version_text(v) for k, v in value.items()}
        return value


class BuildSpec(BaseModel):
    """Root of a build specification document."""

    version: int = 1

    name: str
    description: str = ""

    base_os: BaseOS | None = None
    components: dict[str, str] = Field(default_factory=dict)
    constraints: dict[str, VersionConstraint] = Field(default_factory=dict)
    defaults: Defaults = Field(default_factory=Defaults)

    stages: list[Stage] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)

    @field_validator("components", mode="before")
    @classmethod
    def _components_as_text(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _as_version_text(v) for k, v in value.items()}
        return value

    def get_variant(self, name: str) -> Variant | None:
        for variant in self.variants:
            if variant.name == name:
                return variant
        return None

    @property
    def variant_names(self) -> list[str]:
        return [v.name for v in self.variants]

    def stages_for(self, variant: Variant | None) -> list[Stage]:
        """Shared stages followed by the variant's own, in declaration order."""
        if variant is None:
            return list(self.stages)
        return [*self.stages, *variant.stages]

    def requested_versions(self, variant: Variant | None) -> dict[str, str]:
        """Every component version a run of ``variant`` asks for.

        Later sources win: shared components, the base OS, the variant's
        own components, then the variant's compiler.
        """
        requested: dict[str, str] = dict(self.components)
        if self.base_os is not None:
            requested[self.base_os.name] = self.base_os.version
        if variant is not None:
            requested.update(variant.components)
            if variant.compiler is not None:
                requested[variant.compiler.family] = variant.compiler.version
        return requested

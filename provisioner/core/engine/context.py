"""
Stage execution context — explicit per-stage configuration.

Instead of exporting CC/CXX and friends into a global environment, each
stage gets its own rendered environment and placeholder values, built
from the resolved component versions and the stage's ``env`` block.
``${name}`` placeholders in commands, tool paths, and image references
are filled from these values. Nothing else is touched: ``$$``, bare
``$NAME`` and ``${NAME:-default}`` are left for the shell.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from provisioner.core.models.build_spec import Stage
from provisioner.core.models.version import ComponentVersion

_PLACEHOLDER = re.compile(r"\$\{(\w+)\}")


def render(text: str, values: Mapping[str, str]) -> str:
    """Fill ``${name}`` placeholders; unknown names are left untouched."""

    def _fill(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else value

    return _PLACEHOLDER.sub(_fill, text)


@dataclass(frozen=True)
class RunContext:
    """Everything stage execution needs besides the graph itself."""

    versions: Mapping[str, ComponentVersion] = field(default_factory=dict)
    workdir: str = "."
    action_timeout: float = 1800.0
    probe_timeout: float = 30.0

    def version_values(self) -> dict[str, str]:
        """Component name → resolved version, for placeholder rendering."""
        values: dict[str, str] = {}
        for name, component in self.versions.items():
            values[name] = component.effective
            values[f"{name}_version"] = component.effective
        return values

    def stage_env(self, stage: Stage) -> dict[str, str]:
        """The stage's own environment with version placeholders filled."""
        values = self.version_values()
        return {key: render(value, values) for key, value in stage.env.items()}

    def stage_values(self, stage: Stage) -> dict[str, str]:
        """Placeholder values visible to one stage: versions, then its env."""
        return {**self.version_values(), **self.stage_env(stage)}

    def render_command(self, command: str | list[str], stage: Stage) -> str | list[str]:
        values = self.stage_values(stage)
        if isinstance(command, str):
            return render(command, values)
        return [render(part, values) for part in command]

    def render_path(self, path: str, stage: Stage) -> str:
        """Render an artifact or image path with the stage's values."""
        return render(path, self.stage_values(stage))

"""
Version resolver — validate requested component versions (pure).

Validates each requested version against the version pattern and any
declared constraint, and normalizes compiler output to comparable
major-version tokens. No I/O, no subprocess.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from provisioner.core.errors import InvalidVersionSpec
from provisioner.core.models.build_spec import VersionConstraint
from provisioner.core.models.version import ComponentVersion

Normalizer = Callable[[str], str]

VERSION_PATTERN = re.compile(r"^v?\d+(\.\d+)*([-+.~][0-9A-Za-z.+~-]+)?$")

_MAJOR_PREFIX = re.compile(r"^\s*v?(\d+)")


def major_token(version: str) -> str:
    """Numeric prefix of ``version`` before the first separator.

    ``"13.2.0"`` → ``"13"``, ``"19-1ubuntu1"`` → ``"19"``,
    ``"v1.2"`` → ``"1"``. Returns ``""`` if there is no numeric prefix.
    """
    match = _MAJOR_PREFIX.match(version or "")
    if not match:
        return ""
    return str(int(match.group(1)))


def parse_version(version: str) -> tuple[int, ...]:
    """Numeric release parts of a version string, e.g. ``(2, 17, 0)``.

    Raises:
        ValueError: If the string has no numeric release part.
    """
    release = re.match(r"^v?(\d+(?:\.\d+)*)", version.strip())
    if not release:
        raise ValueError(f"Not a version: {version!r}")
    return tuple(int(x) for x in release.group(1).split("."))


def _pad(parts: tuple[int, ...], width: int) -> tuple[int, ...]:
    return parts + (0,) * (width - len(parts))


def check_version_constraint(
    version: str,
    constraint: VersionConstraint,
) -> str | None:
    """Validate a version against a constraint rule.

    Constraint types:
        - ``exact``: must match exactly (missing parts count as 0)
        - ``gte``: >= the reference
        - ``major``: same major version as the reference
        - ``semver_compat``: ~= compatibility (same major, >= the rest)
        - ``minor_range``: same major, minor within ±range

    Returns:
        An error message, or ``None`` if the version satisfies the rule.
    """
    ref = constraint.reference
    try:
        sel_parts = parse_version(version)
        ref_parts = parse_version(ref)
    except ValueError as e:
        return str(e)

    width = max(len(sel_parts), len(ref_parts), 3)
    sel_parts, ref_parts = _pad(sel_parts, width), _pad(ref_parts, width)
    ctype = constraint.type

    if ctype == "exact":
        if sel_parts == ref_parts:
            return None
        return f"{version} != {ref}, exact match required"

    if ctype == "gte":
        if sel_parts >= ref_parts:
            return None
        return f"{version} < {ref}, minimum required is {ref}"

    if sel_parts[0] != ref_parts[0]:
        return f"major version mismatch: {version} vs {ref}"

    if ctype == "major":
        return None

    if ctype == "semver_compat":
        if sel_parts[1:] >= ref_parts[1:]:
            return None
        return f"{version} is not compatible with ~={ref}"

    if ctype == "minor_range":
        minor_diff = abs(sel_parts[1] - ref_parts[1])
        if minor_diff > constraint.range:
            return (
                f"{version} is {minor_diff} minor versions away from {ref}, "
                f"maximum allowed is ±{constraint.range}"
            )
        return None

    return f"unknown constraint type {ctype!r}"


def validate_version(name: str, value: Any) -> str:
    """Normalize one requested version string or raise ``InvalidVersionSpec``."""
    if value is None:
        raise InvalidVersionSpec(name, value, "no version given")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidVersionSpec(name, value, f"expected a string, got {type(value).__name__}")

    text = str(value).strip()
    if not text:
        raise InvalidVersionSpec(name, value, "version is empty")
    if not VERSION_PATTERN.match(text):
        raise InvalidVersionSpec(name, value, "does not look like a version")

    return text[1:] if text.startswith("v") else text


def resolve_versions(
    requested: Mapping[str, Any],
    constraints: Mapping[str, VersionConstraint] | None = None,
) -> dict[str, ComponentVersion]:
    """Validate every requested version and return resolved components.

    Components are checked in the order given, so the error always names
    the first offending component.

    Args:
        requested: Component name → requested version string.
        constraints: Optional component name → compatibility rule.
            Rules for components not requested here are ignored (another
            variant may request them).

    Returns:
        Component name → ``ComponentVersion`` with ``resolved`` set.

    Raises:
        InvalidVersionSpec: On the first empty, malformed, or
            out-of-range version.
    """
    constraints = constraints or {}
    resolved: dict[str, ComponentVersion] = {}

    for name, value in requested.items():
        normalized = validate_version(name, value)

        rule = constraints.get(name)
        if rule is not None:
            problem = check_version_constraint(normalized, rule)
            if problem:
                raise InvalidVersionSpec(name, value, problem)

        component = ComponentVersion(name=name, requested=str(value).strip())
        resolved[name] = component.resolve(normalized)

    return resolved

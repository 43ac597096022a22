"""
Configuration loader — reads buildspec.yml into domain models.

This is the primary entry point for loading a build specification.
It reads YAML, validates against Pydantic schemas, and returns typed
domain objects. ``dump_build_spec`` writes the same document back;
loading the dump yields an equal specification.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from provisioner.core.models.build_spec import BuildSpec

logger = logging.getLogger(__name__)

# Default spec filename
SPEC_FILE = "buildspec.yml"


class ConfigError(Exception):
    """Raised when the build specification is invalid or missing."""


def find_spec_file(start_dir: Path | None = None) -> Path | None:
    """Search for buildspec.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to buildspec.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SPEC_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def parse_build_spec(raw: str, source: str = "<string>") -> BuildSpec:
    """Parse and validate a build specification from YAML text.

    Raises:
        ConfigError: If the YAML or the schema is invalid.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # The document may wrap everything under a "build" key or be flat
    spec_data = data["build"] if isinstance(data.get("build"), dict) else data

    try:
        return BuildSpec.model_validate(spec_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid build specification in {source}: {e}") from e


def load_build_spec(path: Path | None = None) -> BuildSpec:
    """Load and validate a build specification.

    Args:
        path: Explicit path to buildspec.yml. If None, searches upward.

    Returns:
        Validated BuildSpec model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_spec_file()

    if path is None:
        raise ConfigError(f"No {SPEC_FILE} found. Specify one with --spec.")

    if not path.is_file():
        raise ConfigError(f"Spec file not found: {path}")

    logger.debug("Loading build spec from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    spec = parse_build_spec(raw, str(path))
    logger.info("Loaded build spec '%s' with %d variant(s)", spec.name, len(spec.variants))
    return spec


def dump_build_spec(spec: BuildSpec) -> str:
    """Serialize a build specification back to YAML."""
    data = spec.model_dump(mode="json", exclude_defaults=True)
    data.setdefault("name", spec.name)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def spec_root(spec_path: Path) -> Path:
    """Directory relative paths in a spec resolve against."""
    return spec_path.parent.resolve()

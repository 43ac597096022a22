"""
Tests for the version resolver — validation, constraints, normalization.
"""

import pytest
from pydantic import ValidationError

from provisioner.core.engine.versions import (
    check_version_constraint,
    major_token,
    parse_version,
    resolve_versions,
    validate_version,
)
from provisioner.core.errors import InvalidVersionSpec
from provisioner.core.models.build_spec import VersionConstraint
from provisioner.core.models.version import ComponentVersion

# ── Major token normalization ────────────────────────────────────────


class TestMajorToken:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("13.2.0", "13"),
            ("13", "13"),
            ("12.1.0\n", "12"),
            ("19-1ubuntu1", "19"),
            ("v1.2", "1"),
            ("  18.1.8", "18"),
            ("013", "13"),
        ],
    )
    def test_extracts_major(self, raw, expected):
        assert major_token(raw) == expected

    def test_no_numeric_prefix(self):
        assert major_token("unknown") == ""
        assert major_token("") == ""

    def test_major_of_request_and_probe_agree(self):
        assert major_token("13") == major_token("13.2.0")
        assert major_token("13") != major_token("12.1.0")


class TestParseVersion:
    def test_release_parts(self):
        assert parse_version("2.17.0") == (2, 17, 0)
        assert parse_version("v8.3") == (8, 3)
        assert parse_version("1.2.3-rc1") == (1, 2, 3)

    def test_not_a_version(self):
        with pytest.raises(ValueError):
            parse_version("latest")


# ── Constraints ──────────────────────────────────────────────────────


class TestCheckVersionConstraint:
    def test_gte(self):
        rule = VersionConstraint(type="gte", reference="2.0.0")
        assert check_version_constraint("2.17.0", rule) is None
        assert check_version_constraint("2.0", rule) is None
        assert "minimum required" in check_version_constraint("1.64.1", rule)

    def test_exact_pads_missing_parts(self):
        rule = VersionConstraint(type="exact", reference="13")
        assert check_version_constraint("13.0.0", rule) is None
        assert check_version_constraint("13.2.0", rule) is not None

    def test_major(self):
        rule = VersionConstraint(type="major", reference="8")
        assert check_version_constraint("8.3", rule) is None
        assert "major version mismatch" in check_version_constraint("7.2", rule)

    def test_semver_compat(self):
        rule = VersionConstraint(type="semver_compat", reference="2.4")
        assert check_version_constraint("2.9.1", rule) is None
        assert check_version_constraint("2.3", rule) is not None
        assert check_version_constraint("3.0", rule) is not None

    def test_minor_range(self):
        rule = VersionConstraint(type="minor_range", reference="1.10", range=2)
        assert check_version_constraint("1.12", rule) is None
        assert check_version_constraint("1.8", rule) is None
        assert "maximum allowed is ±2" in check_version_constraint("1.13", rule)

    def test_unparseable_reference(self):
        rule = VersionConstraint(type="gte", reference="latest")
        assert "Not a version" in check_version_constraint("1.0", rule)


# ── Validation and resolution ────────────────────────────────────────


class TestValidateVersion:
    def test_strips_leading_v(self):
        assert validate_version("cmake", "v3.28.1") == "3.28.1"

    def test_accepts_numbers(self):
        assert validate_version("gcc", 13) == "13"

    @pytest.mark.parametrize("value", ["", "   ", "latest", "x13", "13 beta"])
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidVersionSpec) as exc:
            validate_version("gcc", value)
        assert exc.value.component == "gcc"
        assert exc.value.kind == "invalid_version_spec"

    def test_rejects_none_and_bool(self):
        with pytest.raises(InvalidVersionSpec, match="no version given"):
            validate_version("gcc", None)
        with pytest.raises(InvalidVersionSpec, match="expected a string"):
            validate_version("gcc", True)


class TestResolveVersions:
    def test_resolves_every_component(self):
        versions = resolve_versions({"debian": "12", "gcc": "13", "conan": "v2.17.0"})
        assert list(versions) == ["debian", "gcc", "conan"]
        assert versions["conan"].requested == "v2.17.0"
        assert versions["conan"].resolved == "2.17.0"
        assert all(v.is_resolved for v in versions.values())

    def test_first_invalid_component_is_named(self):
        with pytest.raises(InvalidVersionSpec) as exc:
            resolve_versions({"gcc": "13", "conan": "", "gcovr": "nope"})
        assert exc.value.component == "conan"

    def test_constraint_violation(self):
        rules = {"conan": VersionConstraint(type="gte", reference="2.0.0")}
        with pytest.raises(InvalidVersionSpec) as exc:
            resolve_versions({"conan": "1.66.0"}, rules)
        assert exc.value.details["reason"].startswith("1.66.0 < 2.0.0")

    def test_constraint_for_unrequested_component_is_ignored(self):
        rules = {"clang": VersionConstraint(type="gte", reference="16")}
        versions = resolve_versions({"gcc": "13"}, rules)
        assert list(versions) == ["gcc"]


class TestComponentVersion:
    def test_effective_falls_back_to_requested(self):
        c = ComponentVersion(name="gcc", requested="13")
        assert not c.is_resolved
        assert c.effective == "13"

    def test_resolve_returns_copy(self):
        c = ComponentVersion(name="gcc", requested="13")
        r = c.resolve("13")
        assert r.resolved == "13"
        assert c.resolved is None

    def test_resolve_is_write_once(self):
        r = ComponentVersion(name="gcc", requested="13").resolve("13")
        assert r.resolve("13").resolved == "13"
        with pytest.raises(ValueError, match="already resolved"):
            r.resolve("14")

    def test_frozen(self):
        c = ComponentVersion(name="gcc", requested="13")
        with pytest.raises(ValidationError):
            c.resolved = "13"

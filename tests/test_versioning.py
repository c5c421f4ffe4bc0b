"""Tests for NuGet version ordering and range parsing."""

import pytest
from psresource_cli.errors import InvalidVersionRangeError
from psresource_cli.versioning import ALL
from psresource_cli.versioning import NuGetVersion
from psresource_cli.versioning import VersionRange
from psresource_cli.versioning import parse_version_or_range
from psresource_cli.versioning import pick_latest


def v(text: str) -> NuGetVersion:
    return NuGetVersion.parse(text)


class TestNuGetVersion:
    """Parsing and release-aware ordering."""

    def test_missing_parts_default_to_zero(self):
        assert v("1") == v("1.0.0")
        assert v("1.2") == v("1.2.0.0")
        assert str(v("1.2")) == "1.2.0"

    def test_revision_kept_when_nonzero(self):
        assert str(v("1.2.3.4")) == "1.2.3.4"
        assert v("1.2.3.4") > v("1.2.3")

    def test_numeric_parts_compare_numerically(self):
        assert v("1.10.0") > v("1.9.0")

    def test_stable_sorts_above_prerelease(self):
        assert v("2.0.0") > v("2.0.0-beta")
        assert v("2.0.0-beta") > v("1.9.9")

    def test_prerelease_labels(self):
        assert v("1.0.0-alpha") < v("1.0.0-beta")
        assert v("1.0.0-beta.2") < v("1.0.0-beta.10")
        assert v("1.0.0-Beta") == v("1.0.0-beta")
        assert v("1.0.0-rc").is_prerelease
        assert not v("1.0.0").is_prerelease

    def test_build_metadata_ignored(self):
        assert v("1.0.0+build.5") == v("1.0.0")
        assert hash(v("1.0.0+abc")) == hash(v("1.0.0"))

    @pytest.mark.parametrize("text", ["", "abc", "1.0.0.0.0", "1..0", "-1.0", "1.0-"])
    def test_invalid_versions(self, text):
        assert NuGetVersion.try_parse(text) is None
        with pytest.raises(InvalidVersionRangeError):
            NuGetVersion.parse(text)


class TestVersionRange:
    """NuGet interval notation."""

    def test_half_open_range(self):
        r = VersionRange.parse("[1.0,2.0)")
        assert r.satisfies(v("1.0"))
        assert r.satisfies(v("1.5.3"))
        assert not r.satisfies(v("2.0"))
        assert not r.satisfies(v("0.9"))

    def test_bare_version_is_minimum(self):
        r = VersionRange.parse("1.5")
        assert r.satisfies(v("1.5"))
        assert r.satisfies(v("9.0"))
        assert not r.satisfies(v("1.4.9"))

    def test_open_lower_bound(self):
        r = VersionRange.parse("(,1.0]")
        assert r.satisfies(v("0.1"))
        assert r.satisfies(v("1.0"))
        assert not r.satisfies(v("1.0.1"))

    def test_exclusive_lower_bound(self):
        r = VersionRange.parse("(1.0,)")
        assert not r.satisfies(v("1.0"))
        assert r.satisfies(v("1.0.1"))

    def test_exact_interval(self):
        r = VersionRange.parse("[1.2]")
        assert r.is_exact
        assert r.satisfies(v("1.2.0"))
        assert not r.satisfies(v("1.2.1"))

    def test_star_matches_everything(self):
        r = VersionRange.parse("*")
        assert r.satisfies(v("0.0.1"))
        assert r.satisfies(v("99.0.0-beta"))

    @pytest.mark.parametrize(
        "text",
        ["", "   ", "[2.0,1.0]", "(1.0)", "[1.0,1.0)", "[,]", "[1.0", "[1.0,2.0,3.0]", "[abc,2.0]"],
    )
    def test_invalid_ranges(self, text):
        with pytest.raises(InvalidVersionRangeError):
            VersionRange.parse(text)

    def test_find_best_match_picks_maximum_in_range(self):
        versions = [v("1.0"), v("1.5"), v("1.9.9"), v("2.0"), v("2.1")]
        assert VersionRange.parse("[1.0,2.0)").find_best_match(versions) == v("1.9.9")
        assert VersionRange.parse("[3.0,)").find_best_match(versions) is None

    def test_str_round_trips_original(self):
        assert str(VersionRange.parse("[1.0, 2.0)")) == "[1.0, 2.0)"
        assert str(VersionRange(v("1.0"), True, v("2.0"), False)) == "[1.0.0,2.0.0)"


class TestParseVersionOrRange:
    """Caller-supplied constraints."""

    def test_none_means_unconstrained(self):
        assert parse_version_or_range(None) is None

    def test_star_means_all(self):
        assert parse_version_or_range("*") is ALL

    def test_bare_version_means_exact(self):
        r = parse_version_or_range("1.2.3")
        assert r.is_exact
        assert r.satisfies(v("1.2.3"))
        assert not r.satisfies(v("1.2.4"))

    def test_range_passes_through(self):
        r = parse_version_or_range("[1.0,2.0)")
        assert not r.is_exact
        assert r.satisfies(v("1.5"))

    def test_malformed_raises(self):
        with pytest.raises(InvalidVersionRangeError):
            parse_version_or_range("[1.0,")


def test_pick_latest():
    versions = [v("1.0"), v("2.0-beta"), v("1.5")]
    assert pick_latest(versions) == v("2.0-beta")
    assert pick_latest(versions, VersionRange.parse("[1.0,1.5]")) == v("1.5")
    assert pick_latest([]) is None

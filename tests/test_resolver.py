"""Tests for the dependency resolver."""

import threading
from pathlib import Path

import pytest
from psresource_cli.errors import DependencyConflictError
from psresource_cli.errors import DependencyResolutionError
from psresource_cli.errors import OperationCancelledError
from psresource_cli.errors import PackageNotFoundError
from psresource_cli.errors import SourceUnavailableError
from psresource_cli.models import DependencySpec
from psresource_cli.models import PackageIdentity
from psresource_cli.models import PackageMetadata
from psresource_cli.resolution import DependencyResolver
from psresource_cli.versioning import NuGetVersion
from psresource_cli.versioning import VersionRange
from psresource_cli.versioning import parse_version_or_range


class FakeSource:
    """In-memory source: {id: [(version, [(dep_id, dep_range)])]}."""

    location = "memory://feed"

    def __init__(self, packages: dict[str, list[tuple[str, list[tuple[str, str | None]]]]]):
        self.packages = packages
        self.queries: list[str] = []
        self.unavailable: set[str] = set()

    def list_versions(self, package_id: str, include_prerelease: bool = False) -> list[PackageMetadata]:
        self.queries.append(package_id)
        if package_id.lower() in self.unavailable:
            raise SourceUnavailableError(f"feed failed for {package_id}")
        for name, versions in self.packages.items():
            if name.lower() != package_id.lower():
                continue
            result = []
            for version, deps in versions:
                parsed = NuGetVersion.parse(version)
                if parsed.is_prerelease and not include_prerelease:
                    continue
                result.append(
                    PackageMetadata(
                        identity=PackageIdentity(name, parsed),
                        dependencies=[DependencySpec(d, r) for d, r in deps],
                    )
                )
            return result
        return []

    def download(self, identity: PackageIdentity, destination_dir: Path) -> Path:
        raise NotImplementedError

    def search(self, pattern: str) -> list[str]:
        return []

    def search_tags(self, tags: list[str], include_prerelease: bool = False) -> list[PackageMetadata]:
        return []

    def close(self) -> None:
        pass


def nothing_installed(name, version_range):
    return False


def names(packages) -> list[str]:
    return [f"{p.name}@{p.version}" for p in packages]


class TestRootSelection:
    """Picking the root package version."""

    @pytest.fixture
    def source(self):
        return FakeSource({"Foo": [("1.0.0", []), ("1.5.0", []), ("2.0.0", []), ("2.1.0-beta", [])]})

    def test_unset_constraint_picks_latest_stable(self, source):
        result = DependencyResolver(source, nothing_installed).resolve("Foo")

        assert str(result.root.version) == "2.0.0"
        assert result.root.is_root

    def test_prerelease_allowed(self, source):
        result = DependencyResolver(source, nothing_installed).resolve("Foo", prerelease=True)

        assert str(result.root.version) == "2.1.0-beta"

    def test_range_picks_maximum_satisfying_version(self, source):
        result = DependencyResolver(source, nothing_installed).resolve("Foo", VersionRange.parse("[1.0,2.0)"))

        assert str(result.root.version) == "1.5.0"

    def test_exact_version_is_returned_exactly(self, source):
        result = DependencyResolver(source, nothing_installed).resolve("Foo", parse_version_or_range("1.0.0"))

        assert result.root.version == NuGetVersion.parse("1.0.0")

    def test_no_satisfying_version_is_not_found(self, source):
        resolver = DependencyResolver(source, nothing_installed, repository="Local")

        with pytest.raises(PackageNotFoundError, match="Local"):
            resolver.resolve("Foo", VersionRange.parse("[3.0,)"))

    def test_unknown_package_is_not_found(self, source):
        with pytest.raises(PackageNotFoundError):
            DependencyResolver(source, nothing_installed).resolve("Nope")

    def test_root_source_failure_propagates(self, source):
        source.unavailable.add("foo")

        with pytest.raises(SourceUnavailableError):
            DependencyResolver(source, nothing_installed).resolve("Foo")

    def test_resolved_package_carries_repository(self, source):
        result = DependencyResolver(source, nothing_installed, repository="Local").resolve("Foo")

        assert result.root.repository == "Local"
        assert result.root.source_location == "memory://feed"
        assert result.root.source is source


class TestDependencyWalk:
    """Transitive dependency expansion."""

    def test_pre_order_discovery(self):
        source = FakeSource(
            {
                "Root": [("1.0", [("A", None), ("B", None)])],
                "A": [("1.0", [("A1", None)])],
                "A1": [("1.0", [])],
                "B": [("1.0", [])],
            }
        )

        result = DependencyResolver(source, nothing_installed).resolve("Root")

        assert names(result.packages) == ["Root@1.0.0", "A@1.0.0", "A1@1.0.0", "B@1.0.0"]

    def test_dependency_picks_maximum_in_declared_range(self):
        source = FakeSource(
            {
                "Root": [("1.0", [("Dep", "[1.0,2.0)")])],
                "Dep": [("1.0", []), ("1.9", []), ("2.0", [])],
            }
        )

        result = DependencyResolver(source, nothing_installed).resolve("Root")

        assert names(result.dependencies) == ["Dep@1.9.0"]

    def test_dependency_without_range_picks_global_maximum(self):
        source = FakeSource({"Root": [("1.0", [("Dep", None)])], "Dep": [("1.0", []), ("3.0", [])]})

        result = DependencyResolver(source, nothing_installed).resolve("Root")

        assert names(result.dependencies) == ["Dep@3.0.0"]

    def test_installed_dependency_is_omitted(self):
        source = FakeSource({"Bar": [("1.0", [("Baz", "[1.0,2.0)")])], "Baz": [("1.5.0", [])]})
        calls = []

        def baz_installed(name, version_range):
            calls.append((name, str(version_range)))
            return name.lower() == "baz" and version_range.satisfies(NuGetVersion.parse("1.5.0"))

        result = DependencyResolver(source, baz_installed).resolve("Bar")

        assert result.dependencies == []
        assert result.satisfied_locally == ["Baz"]
        assert calls == [("Baz", "[1.0,2.0)")]
        assert "Baz" not in source.queries

    def test_installed_dependency_included_on_reinstall(self):
        source = FakeSource({"Bar": [("1.0", [("Baz", "[1.0,2.0)")])], "Baz": [("1.5.0", [])]})

        result = DependencyResolver(source, lambda n, r: True).resolve("Bar", reinstall=True)

        assert names(result.dependencies) == ["Baz@1.5.0"]

    def test_skip_dependency_check_resolves_root_only(self):
        source = FakeSource({"Root": [("1.0", [("Dep", None)])], "Dep": [("1.0", [])]})

        result = DependencyResolver(source, nothing_installed).resolve("Root", skip_dependency_check=True)

        assert result.dependencies == []
        assert source.queries == ["Root"]

    def test_diamond_is_resolved_once(self):
        source = FakeSource(
            {
                "Root": [("1.0", [("Left", None), ("Right", None)])],
                "Left": [("1.0", [("Shared", "[1.0,)")])],
                "Right": [("1.0", [("Shared", "[1.0,3.0)")])],
                "Shared": [("2.0", [])],
            }
        )

        result = DependencyResolver(source, nothing_installed).resolve("Root")

        assert names(result.dependencies) == ["Left@1.0.0", "Shared@2.0.0", "Right@1.0.0"]
        assert source.queries.count("Shared") == 1

    def test_cycle_terminates(self):
        source = FakeSource(
            {
                "A": [("1.0", [("B", None)])],
                "B": [("1.0", [("C", None)])],
                "C": [("1.0", [("A", None)])],
            }
        )

        result = DependencyResolver(source, nothing_installed).resolve("A")

        assert names(result.packages) == ["A@1.0.0", "B@1.0.0", "C@1.0.0"]

    def test_sibling_conflict_is_reported(self):
        source = FakeSource(
            {
                "Root": [("1.0", [("Left", None), ("Right", None)])],
                "Left": [("1.0", [("Shared", "[1.0,2.0)")])],
                "Right": [("1.0", [("Shared", "[2.0,3.0)")])],
                "Shared": [("1.5", []), ("2.5", [])],
            }
        )

        with pytest.raises(DependencyConflictError) as exc_info:
            DependencyResolver(source, nothing_installed).resolve("Root")

        assert exc_info.value.package == "Root"
        assert exc_info.value.dependency == "Shared"
        assert "Right" in str(exc_info.value)

    def test_malformed_range_is_reported(self):
        source = FakeSource({"Root": [("1.0", [("Dep", "[2.0,1.0]")])], "Dep": [("1.0", [])]})

        with pytest.raises(DependencyResolutionError, match="malformed"):
            DependencyResolver(source, nothing_installed).resolve("Root")

    def test_missing_dependency_is_reported(self):
        source = FakeSource({"Root": [("1.0", [("Ghost", None)])]})

        with pytest.raises(DependencyResolutionError) as exc_info:
            DependencyResolver(source, nothing_installed).resolve("Root")

        assert exc_info.value.dependency == "Ghost"

    def test_dependency_source_failure_is_reported(self):
        source = FakeSource({"Root": [("1.0", [("Dep", None)])], "Dep": [("1.0", [])]})
        source.unavailable.add("dep")

        with pytest.raises(DependencyResolutionError):
            DependencyResolver(source, nothing_installed).resolve("Root")


def test_cancellation_stops_resolution():
    source = FakeSource({"Foo": [("1.0", [])]})
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelledError):
        DependencyResolver(source, nothing_installed, cancel=cancel).resolve("Foo")

    assert source.queries == []

"""End-to-end orchestrator tests against local directory repositories."""

import threading

import pytest
from psresource_cli.errors import ClobberError
from psresource_cli.errors import DependencyResolutionError
from psresource_cli.errors import InvalidArgumentError
from psresource_cli.errors import InvalidVersionRangeError
from psresource_cli.errors import LicenseNotFoundError
from psresource_cli.errors import OperationCancelledError
from psresource_cli.errors import PackageNotFoundError
from psresource_cli.errors import RepositoryNotFoundError
from psresource_cli.errors import TrustDeniedError
from psresource_cli.install import InstalledPackageIndex
from psresource_cli.install import InstallLayout
from psresource_cli.models import InstallOptions
from psresource_cli.models import InstallScope
from psresource_cli.orchestrator import InstallOrchestrator
from psresource_cli.repositories import RepositoryRegistry


@pytest.fixture
def registry(tmp_path):
    registry = RepositoryRegistry(tmp_path / "repositories.yaml")
    registry.remove(["PSGallery"])
    return registry


@pytest.fixture
def local_feed(tmp_path, registry):
    path = tmp_path / "local"
    path.mkdir()
    registry.add("Local", str(path), priority=0, trusted=True)
    return path


@pytest.fixture
def remote_feed(tmp_path, registry):
    path = tmp_path / "remote"
    path.mkdir()
    registry.add("Remote", str(path), priority=10, trusted=True)
    return path


@pytest.fixture
def layouts(tmp_path):
    return {scope: InstallLayout(tmp_path / "installed" / scope.value) for scope in InstallScope}


@pytest.fixture
def make_orchestrator(registry, layouts, tmp_path):
    def factory(**kwargs):
        kwargs.setdefault("temp_root", tmp_path / "staging")
        return InstallOrchestrator(registry, layouts.__getitem__, **kwargs)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


def installed(layouts, scope=InstallScope.CURRENT_USER):
    index = InstalledPackageIndex([layouts[scope]])
    return [(r.name, r.version) for r in index.get()]


class TestRepositoryFallThrough:
    """Repositories are tried in priority order until every name is satisfied."""

    def test_package_found_only_on_lower_priority_repository(
        self, orchestrator, local_feed, remote_feed, layouts, nupkg_factory
    ):
        nupkg_factory(remote_feed, "Foo", "1.0.0")

        report = orchestrator.run(["Foo"])

        assert report.succeeded
        assert [(r.name, r.repository) for r in report.installed] == [("Foo", "Remote")]
        assert installed(layouts) == [("Foo", "1.0.0")]

    def test_higher_priority_repository_wins(self, orchestrator, local_feed, remote_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        nupkg_factory(remote_feed, "Foo", "2.0.0")

        report = orchestrator.run(["Foo"])

        assert [(r.version, r.repository) for r in report.installed] == [("1.0.0", "Local")]

    def test_each_name_resolved_from_first_repository_that_has_it(
        self, orchestrator, local_feed, remote_feed, layouts, nupkg_factory
    ):
        nupkg_factory(local_feed, "A", "1.0.0")
        nupkg_factory(remote_feed, "B", "1.0.0")

        report = orchestrator.run(["A", "B"])

        assert {(r.name, r.repository) for r in report.installed} == {("A", "Local"), ("B", "Remote")}

    def test_missing_everywhere_is_unsatisfied(self, orchestrator, local_feed, remote_feed):
        report = orchestrator.run(["Ghost"])

        assert not report.succeeded
        assert report.unsatisfied == ["Ghost"]
        assert report.installed == []

    def test_dependency_failure_falls_through_to_next_repository(
        self, orchestrator, local_feed, remote_feed, layouts, nupkg_factory
    ):
        nupkg_factory(local_feed, "Root", "1.0.0", dependencies=[("Missing", None)])
        nupkg_factory(remote_feed, "Root", "1.0.0", dependencies=[("Missing", None)])
        nupkg_factory(remote_feed, "Missing", "1.0.0")

        report = orchestrator.run(["Root"])

        assert report.succeeded
        assert {r.repository for r in report.installed} == {"Remote"}
        assert any(isinstance(e, DependencyResolutionError) for e in report.errors)
        assert installed(layouts) == [("Missing", "1.0.0"), ("Root", "1.0.0")]

    def test_selected_repositories_only(self, orchestrator, local_feed, remote_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        nupkg_factory(remote_feed, "Foo", "2.0.0")

        report = orchestrator.run(["Foo"], repositories=["Remote"])

        assert [r.version for r in report.installed] == ["2.0.0"]

    def test_unknown_repository_is_rejected(self, orchestrator, local_feed):
        with pytest.raises(RepositoryNotFoundError):
            orchestrator.run(["Foo"], repositories=["Nope"])

    def test_unreachable_repository_is_reported_and_skipped(
        self, orchestrator, registry, remote_feed, tmp_path, nupkg_factory
    ):
        registry.add("Gone", str(tmp_path / "does-not-exist"), priority=0, trusted=True)
        nupkg_factory(remote_feed, "Foo", "1.0.0")

        report = orchestrator.run(["Foo"])

        assert report.succeeded
        assert len(report.errors) == 1


class TestDependencies:
    def test_installed_dependency_is_not_reinstalled(self, orchestrator, local_feed, layouts, nupkg_factory):
        nupkg_factory(local_feed, "Baz", "1.5.0")
        nupkg_factory(local_feed, "Baz", "1.9.0")
        nupkg_factory(local_feed, "Bar", "1.0.0", dependencies=[("Baz", "[1.0,2.0)")])
        orchestrator.run(["Baz"], version="1.5.0")

        report = orchestrator.run(["Bar"])

        assert [(r.name, r.version) for r in report.installed] == [("Bar", "1.0.0")]
        assert installed(layouts) == [("Bar", "1.0.0"), ("Baz", "1.5.0")]

    def test_missing_dependency_is_installed(self, orchestrator, local_feed, layouts, nupkg_factory):
        nupkg_factory(local_feed, "Baz", "1.5.0")
        nupkg_factory(local_feed, "Baz", "1.9.0")
        nupkg_factory(local_feed, "Bar", "1.0.0", dependencies=[("Baz", "[1.0,2.0)")])

        report = orchestrator.run(["Bar"])

        assert [(r.name, r.version) for r in report.installed] == [("Bar", "1.0.0"), ("Baz", "1.9.0")]

    def test_shared_dependency_installed_once(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "A", "1.0.0", dependencies=[("Common", None)])
        nupkg_factory(local_feed, "B", "1.0.0", dependencies=[("Common", None)])
        nupkg_factory(local_feed, "Common", "1.0.0")

        report = orchestrator.run(["A", "B"])

        assert sorted(r.name for r in report.installed) == ["A", "B", "Common"]


class TestRunInput:
    """Caller input handling."""

    def test_invalid_version_is_rejected_before_fetching(self, orchestrator, local_feed):
        with pytest.raises(InvalidVersionRangeError):
            orchestrator.run(["Foo"], version="[2.0,1.0]")

    def test_wildcard_names_are_rejected(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")

        report = orchestrator.run(["Fo*", "Foo"])

        assert [r.name for r in report.installed] == ["Foo"]
        assert len(report.errors) == 1
        assert isinstance(report.errors[0], InvalidArgumentError)

    def test_duplicate_names_install_once(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")

        report = orchestrator.run(["Foo", "foo"])

        assert [r.name for r in report.installed] == ["Foo"]

    def test_already_installed_is_skipped(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        orchestrator.run(["Foo"])

        report = orchestrator.run(["Foo"])

        assert report.succeeded
        assert report.installed == []
        assert report.skipped == ["Foo"]

    def test_reinstall_installs_again(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        orchestrator.run(["Foo"])

        report = orchestrator.run(["Foo"], options=InstallOptions(reinstall=True))

        assert [r.name for r in report.installed] == ["Foo"]

    def test_scope_selects_install_root(self, orchestrator, local_feed, layouts, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")

        orchestrator.run(["Foo"], scope=InstallScope.ALL_USERS)

        assert installed(layouts, InstallScope.ALL_USERS) == [("Foo", "1.0.0")]
        assert installed(layouts) == []

    def test_cancelled_run_raises(self, make_orchestrator, local_feed, layouts, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError):
            make_orchestrator(cancel=cancel).run(["Foo"])

        assert installed(layouts) == []


class TestTrust:
    """Untrusted repositories need approval."""

    @pytest.fixture
    def untrusted_feed(self, tmp_path, registry, nupkg_factory):
        path = tmp_path / "untrusted"
        nupkg_factory(path, "Foo", "1.0.0")
        registry.add("Untrusted", str(path), priority=5)
        return path

    def test_declined_without_prompt(self, orchestrator, untrusted_feed):
        report = orchestrator.run(["Foo"])

        assert report.unsatisfied == ["Foo"]
        assert isinstance(report.errors[0], TrustDeniedError)

    def test_prompt_approves(self, make_orchestrator, untrusted_feed):
        prompts = []

        def approve(title, message):
            prompts.append(title)
            return True

        report = make_orchestrator(prompt=approve).run(["Foo"])

        assert report.succeeded
        assert prompts == ["Untrusted repository"]

    def test_prompt_declines(self, make_orchestrator, untrusted_feed):
        report = make_orchestrator(prompt=lambda t, m: False).run(["Foo"])

        assert report.unsatisfied == ["Foo"]

    @pytest.mark.parametrize("options", [InstallOptions(trust_repository=True), InstallOptions(force=True)])
    def test_options_bypass_prompt(self, orchestrator, untrusted_feed, options):
        report = orchestrator.run(["Foo"], options=options)

        assert report.succeeded

    def test_declined_repository_falls_through(self, orchestrator, untrusted_feed, remote_feed, nupkg_factory):
        nupkg_factory(remote_feed, "Foo", "2.0.0")

        report = orchestrator.run(["Foo"])

        assert [(r.version, r.repository) for r in report.installed] == [("2.0.0", "Remote")]


class TestClobber:
    def test_no_clobber_blocks_colliding_package(self, orchestrator, local_feed, layouts, nupkg_factory):
        nupkg_factory(local_feed, "Existing", "1.0.0", tags=["PSCommand_Get-Widget"])
        nupkg_factory(local_feed, "Newcomer", "1.0.0", tags=["PSCommand_Get-Widget"])
        orchestrator.run(["Existing"])

        report = orchestrator.run(["Newcomer"], options=InstallOptions(no_clobber=True))

        assert report.unsatisfied == ["Newcomer"]
        (error,) = report.errors
        assert isinstance(error, ClobberError)
        assert error.owners == ["Existing"]
        assert installed(layouts) == [("Existing", "1.0.0")]


class TestSave:
    def test_save_writes_to_path_not_install_root(self, orchestrator, local_feed, layouts, tmp_path, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0", dependencies=[("Dep", None)])
        nupkg_factory(local_feed, "Dep", "1.0.0")
        out = tmp_path / "out"

        report = orchestrator.save(["Foo"], out)

        assert report.succeeded
        assert (out / "Foo" / "1.0.0" / "Foo.psd1").exists()
        assert (out / "Dep" / "1.0.0" / "Dep.psd1").exists()
        assert installed(layouts) == []

    def test_save_ignores_installed_packages(self, orchestrator, local_feed, tmp_path, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        orchestrator.run(["Foo"])

        report = orchestrator.save(["Foo"], tmp_path / "out")

        assert [r.name for r in report.installed] == ["Foo"]

    def test_save_as_nupkg(self, orchestrator, local_feed, tmp_path, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        out = tmp_path / "out"

        orchestrator.save(["Foo"], out, options=InstallOptions(as_nupkg=True))

        assert [p.name for p in out.iterdir()] == ["foo.1.0.0.nupkg"]


class TestUpdate:
    @pytest.fixture
    def feed(self, local_feed, orchestrator, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        orchestrator.run(["Foo"])
        nupkg_factory(local_feed, "Foo", "2.0.0")
        nupkg_factory(local_feed, "Foo", "3.0.0-beta")
        return local_feed

    def test_update_installs_newer_version(self, orchestrator, feed, layouts):
        report = orchestrator.update(["Foo"])

        assert [r.version for r in report.installed] == ["2.0.0"]
        assert installed(layouts) == [("Foo", "2.0.0"), ("Foo", "1.0.0")]

    def test_update_all_installed(self, orchestrator, feed):
        report = orchestrator.update()

        assert [r.version for r in report.installed] == ["2.0.0"]

    def test_update_with_prerelease(self, orchestrator, feed):
        report = orchestrator.update(["Foo"], options=InstallOptions(prerelease=True))

        assert [r.version for r in report.installed] == ["3.0.0-beta"]

    def test_current_package_is_skipped(self, orchestrator, feed):
        orchestrator.update(["Foo"])

        report = orchestrator.update(["Foo"])

        assert report.succeeded
        assert report.installed == []
        assert report.skipped == ["Foo"]

    def test_newer_version_that_fails_to_install_is_not_current(self, orchestrator, local_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        orchestrator.run(["Foo"])
        nupkg_factory(local_feed, "Foo", "2.0.0", require_license=True)

        report = orchestrator.update(["Foo"])

        assert not report.succeeded
        assert report.unsatisfied == ["Foo"]
        assert report.skipped == []
        assert any(isinstance(e, LicenseNotFoundError) for e in report.errors)

    def test_declined_repository_is_not_reported_current(self, orchestrator, registry, feed):
        registry.update("Local", trusted=False)

        report = orchestrator.update(["Foo"])

        assert not report.succeeded
        assert report.unsatisfied == ["Foo"]
        assert isinstance(report.errors[0], TrustDeniedError)

    def test_update_respects_range(self, orchestrator, feed, nupkg_factory):
        nupkg_factory(feed, "Foo", "1.5.0")

        report = orchestrator.update(["Foo"], version="[1.0,2.0)")

        assert [r.version for r in report.installed] == ["1.5.0"]

    def test_update_not_installed(self, orchestrator, feed):
        report = orchestrator.update(["Nope"])

        assert report.unsatisfied == ["Nope"]
        assert isinstance(report.errors[0], PackageNotFoundError)


class TestFind:
    @pytest.fixture
    def feeds(self, local_feed, remote_feed, nupkg_factory):
        nupkg_factory(local_feed, "Foo", "1.0.0")
        nupkg_factory(local_feed, "Foo", "2.0.0")
        nupkg_factory(local_feed, "Foo.Tools", "1.0.0")
        nupkg_factory(remote_feed, "Foo", "3.0.0-rc1")

    def test_newest_per_repository(self, orchestrator, feeds):
        results = orchestrator.find(["Foo"])

        assert [(r.repository, str(r.metadata.version)) for r in results] == [("Local", "2.0.0")]

    def test_all_versions(self, orchestrator, feeds):
        results = orchestrator.find(["Foo"], version="*", prerelease=True)

        assert [(r.repository, str(r.metadata.version)) for r in results] == [
            ("Local", "2.0.0"),
            ("Local", "1.0.0"),
            ("Remote", "3.0.0-rc1"),
        ]

    def test_wildcard_name(self, orchestrator, feeds):
        results = orchestrator.find(["foo*"], repositories=["Local"])

        assert [r.metadata.name for r in results] == ["Foo", "Foo.Tools"]

    def test_unreachable_repository_is_skipped(self, orchestrator, registry, feeds, tmp_path):
        registry.add("Gone", str(tmp_path / "missing"), priority=0)

        results = orchestrator.find(["Foo"])

        assert [r.repository for r in results] == ["Local"]


class TestFindByTagAndCommand:
    """Tag and exported-command searches, with or without names."""

    @pytest.fixture
    def feeds(self, local_feed, remote_feed, nupkg_factory):
        nupkg_factory(local_feed, "Json", "1.0.0", tags=["JSON", "PSModule", "PSCommand_ConvertTo-Json"])
        nupkg_factory(local_feed, "Json", "2.0.0", tags=["JSON", "PSModule", "PSCommand_ConvertTo-Json"])
        nupkg_factory(local_feed, "Yaml", "1.0.0", tags=["YAML", "PSModule", "PSFunction_ConvertTo-Yaml"])
        nupkg_factory(local_feed, "WebConfig", "1.0.0", tags=["PSDscResource_xWebsite"])
        nupkg_factory(remote_feed, "Json.Lite", "1.0.0", tags=["json", "PSCommand_ConvertTo-Json"])

    def test_find_by_tag_returns_newest_per_package(self, orchestrator, feeds):
        results = orchestrator.find(tags=["json"])

        assert [(r.repository, str(r.metadata.identity)) for r in results] == [
            ("Local", "Json.2.0.0"),
            ("Remote", "Json.Lite.1.0.0"),
        ]

    def test_every_tag_must_match(self, orchestrator, feeds):
        results = orchestrator.find(tags=["PSModule", "YAML"])

        assert [r.metadata.name for r in results] == ["Yaml"]

    def test_tag_narrows_name_search(self, orchestrator, feeds):
        assert orchestrator.find(["Json", "Yaml"], tags=["YAML"])[0].metadata.name == "Yaml"
        assert orchestrator.find(["Json"], tags=["YAML"]) == []

    def test_find_by_command(self, orchestrator, feeds):
        results = orchestrator.find(commands=["convertto-json"], version="*")

        assert [(r.repository, str(r.metadata.identity)) for r in results] == [
            ("Local", "Json.2.0.0"),
            ("Local", "Json.1.0.0"),
            ("Remote", "Json.Lite.1.0.0"),
        ]
        assert results[0].commands == ["convertto-json"]

    def test_find_by_dsc_resource(self, orchestrator, feeds):
        results = orchestrator.find(commands=["xWebsite"])

        assert [r.metadata.name for r in results] == ["WebConfig"]

    def test_command_filter_with_names_checks_every_capability_kind(self, orchestrator, feeds):
        results = orchestrator.find(["Yaml"], commands=["ConvertTo-Yaml"])

        assert [r.metadata.name for r in results] == ["Yaml"]
        assert results[0].commands == ["ConvertTo-Yaml"]

    def test_nothing_to_search_for_is_rejected(self, orchestrator, feeds):
        with pytest.raises(InvalidArgumentError):
            orchestrator.find([" "])

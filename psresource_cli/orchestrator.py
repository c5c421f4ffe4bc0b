"""Install orchestration across repositories.

Repositories are tried in priority order. Each one gets only the names no
earlier repository satisfied; the run stops as soon as nothing is
outstanding. Resolver and transaction each return their own result and
the orchestrator folds them into one InstallReport.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from pathlib import Path

from .errors import DependencyResolutionError
from .errors import InvalidArgumentError
from .errors import OperationCancelledError
from .errors import PackageNotFoundError
from .errors import PSResourceError
from .errors import RepositoryNotFoundError
from .errors import SourceUnavailableError
from .errors import TrustDeniedError
from .install import InstalledPackageIndex
from .install import InstallLayout
from .install import InstallTransaction
from .install.transaction import Prompt
from .models import CapabilityIndex
from .models import Credential
from .models import InstalledPackageRecord
from .models import InstallOptions
from .models import InstallScope
from .models import PackageIdentity
from .models import PackageMetadata
from .models import RepositoryEntry
from .models import ResolvedPackage
from .repositories import RepositoryRegistry
from .resolution import DependencyResolver
from .sources import SourceClient
from .sources import create_source_client
from .versioning import NuGetVersion
from .versioning import VersionRange
from .versioning import parse_version_or_range

logger = logging.getLogger(__name__)

SourceFactory = Callable[[RepositoryEntry, Credential | None], SourceClient]
LayoutFactory = Callable[[InstallScope], InstallLayout]

_WILDCARDS = ("*", "?", "[")

_COMMAND_SEARCH_PREFIXES = ("PSCommand_", "PSDscResource_")


def _has_wildcard(name: str) -> bool:
    return any(c in name for c in _WILDCARDS)


def _has_tags(metadata: PackageMetadata, tags: list[str]) -> bool:
    present = {t.lower() for t in metadata.tags}
    return all(t.lower() in present for t in tags)


def _exported_commands(metadata: PackageMetadata, commands: list[str]) -> list[str]:
    """The requested commands or DSC resources this package exports."""
    if not commands:
        return []
    exported = CapabilityIndex.from_tags(metadata.tags).exported_names()
    return [c for c in commands if c.lower() in exported]


@dataclass
class InstallReport:
    """Outcome of an install, save or update run."""

    installed: list[InstalledPackageRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[PSResourceError] = field(default_factory=list)
    unsatisfied: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.unsatisfied


@dataclass
class FindResult:
    repository: str
    metadata: PackageMetadata
    commands: list[str] = field(default_factory=list)


class InstallOrchestrator:
    """Drive resolver and transaction across the registered repositories.

    Contract:
    - Inputs: package names, an optional version constraint, options
    - Outputs: InstallReport (run/save/update) or FindResult list (find)
    - Side Effects: writes under the scope's install root or the save path
    - Errors: UserInputError for bad input, raised before anything is
      fetched; per-package and per-repository failures go to the report
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        layout_for_scope: LayoutFactory,
        source_factory: SourceFactory = create_source_client,
        prompt: Prompt | None = None,
        temp_root: Path | None = None,
        cancel: threading.Event | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Registered repositories
            layout_for_scope: Returns the install layout for a scope
            source_factory: Builds a source client for a repository
            prompt: Asks (title, message) and returns the answer; None
                declines every untrusted repository and license
            temp_root: Parent directory for staging (system temp when None)
            cancel: Set to abort between source queries and downloads
        """
        self.registry = registry
        self.layout_for_scope = layout_for_scope
        self.source_factory = source_factory
        self.prompt = prompt
        self.temp_root = temp_root
        self.cancel = cancel or threading.Event()

    def _check_cancelled(self) -> None:
        if self.cancel.is_set():
            raise OperationCancelledError("Operation cancelled")

    # ----- public operations -----

    def run(
        self,
        names: list[str],
        version: str | None = None,
        repositories: list[str] | None = None,
        scope: InstallScope = InstallScope.CURRENT_USER,
        options: InstallOptions | None = None,
    ) -> InstallReport:
        """Install packages and their dependencies into ``scope``.

        Args:
            names: Package names; wildcards are rejected
            version: Exact version, range, ``*`` or None for the latest
            repositories: Repository names to use (all registered when None)
            scope: Install root to target for every package in the run
            options: Caller switches

        Returns:
            InstallReport; ``unsatisfied`` lists names no repository provided

        Raises:
            InvalidVersionRangeError: ``version`` cannot be parsed
            RepositoryNotFoundError: An explicitly named repository is not registered
        """
        options = options or InstallOptions()
        version_range = parse_version_or_range(version)
        layout = self.layout_for_scope(scope)
        index = InstalledPackageIndex([layout])
        report = InstallReport()

        requests: dict[str, VersionRange | None] = {}
        for name in self._validate_names(names, report):
            if not options.reinstall and index.satisfies(name, version_range):
                logger.warning(
                    f"Resource '{name}' is already installed within {version_range or 'any version'}. "
                    f"Use the reinstall option to install it again."
                )
                report.skipped.append(name)
                continue
            requests[name] = version_range

        logger.info(f"Installing {', '.join(requests) or 'nothing'} into {layout.root}")
        self._install_loop(requests, repositories, options, layout, index, report)
        return report

    def save(
        self,
        names: list[str],
        path: Path,
        version: str | None = None,
        repositories: list[str] | None = None,
        options: InstallOptions | None = None,
    ) -> InstallReport:
        """Download packages and dependencies into ``path`` without installing them.

        License checks are skipped and nothing already installed is
        consulted; ``as_nupkg`` keeps the archives instead of expanding them.
        """
        options = replace(options or InstallOptions(), save_only=True)
        version_range = parse_version_or_range(version)
        report = InstallReport()
        requests = {name: version_range for name in self._validate_names(names, report)}

        logger.info(f"Saving {', '.join(requests) or 'nothing'} to {path}")
        self._install_loop(
            requests,
            repositories,
            options,
            InstallLayout(path),
            InstalledPackageIndex([]),
            report,
            save_path=path,
        )
        return report

    def update(
        self,
        names: list[str] | None = None,
        version: str | None = None,
        repositories: list[str] | None = None,
        scope: InstallScope = InstallScope.CURRENT_USER,
        options: InstallOptions | None = None,
    ) -> InstallReport:
        """Install a newer version of already-installed packages.

        A package is updated when some repository has a version inside
        ``version`` that is newer than the newest installed one. Packages
        every repository reports nothing newer for are skipped; a newer
        version that fails to install leaves the package unsatisfied.
        """
        options = replace(options or InstallOptions(), reinstall=False)
        version_range = parse_version_or_range(version)
        layout = self.layout_for_scope(scope)
        index = InstalledPackageIndex([layout])
        report = InstallReport()

        newest: dict[str, InstalledPackageRecord] = {}
        for record in index.get(names or None):
            newest.setdefault(record.name.lower(), record)

        for name in names or []:
            if not _has_wildcard(name) and name.lower() not in newest:
                report.errors.append(PackageNotFoundError(f"Package '{name}' is not installed"))
                report.unsatisfied.append(name)

        requests = {
            record.name: _newer_than(record.parsed_version, version_range) for record in newest.values()
        }
        absent = self._install_loop(requests, repositories, options, layout, index, report)

        # Only a package no repository had anything newer for is current
        current = [n for n in report.unsatisfied if n.lower() in newest and n.lower() in absent]
        for name in current:
            logger.info(f"{name} is up to date")
            report.unsatisfied.remove(name)
            report.skipped.append(name)
        return report

    def find(
        self,
        names: list[str] | None = None,
        version: str | None = None,
        repositories: list[str] | None = None,
        prerelease: bool = False,
        credential: Credential | None = None,
        tags: list[str] | None = None,
        commands: list[str] | None = None,
    ) -> list[FindResult]:
        """Look packages up in every selected repository.

        Without ``version`` only the newest version per package and
        repository is returned; with ``*`` every version; otherwise every
        version in range. Unreachable repositories are logged and skipped.

        Args:
            names: Package names or wildcard patterns
            tags: Only packages carrying every one of these tags
            commands: Only packages exporting at least one of these commands
                or DSC resources; searched by capability tag when no names
                are given

        Raises:
            InvalidArgumentError: No names, tags or commands were given
        """
        names = [n.strip() for n in names or [] if n.strip()]
        tags = [t.strip() for t in tags or [] if t.strip()]
        commands = [c.strip() for c in commands or [] if c.strip()]
        if not (names or tags or commands):
            raise InvalidArgumentError("Specify a package name, a tag or a command to find")
        version_range = parse_version_or_range(version)
        results: list[FindResult] = []

        for entry in self._select_repositories(repositories):
            self._check_cancelled()
            source = self.source_factory(entry, credential)
            try:
                candidates = self._find_candidates(source, entry, names, tags, commands, prerelease)
            except SourceUnavailableError as e:
                logger.warning(f"Skipping repository '{entry.name}': {e}")
                continue
            finally:
                source.close()

            by_id: dict[str, list[PackageMetadata]] = {}
            for metadata in candidates:
                if not _has_tags(metadata, tags):
                    continue
                if commands and not _exported_commands(metadata, commands):
                    continue
                by_id.setdefault(metadata.name.lower(), []).append(metadata)

            for versions in by_id.values():
                if version_range is not None:
                    versions = [m for m in versions if version_range.satisfies(m.version)]
                versions.sort(key=lambda m: m.version, reverse=True)
                if version is None:
                    versions = versions[:1]
                results.extend(FindResult(entry.name, m, _exported_commands(m, commands)) for m in versions)

        return results

    # ----- helpers -----

    def _validate_names(self, names: list[str], report: InstallReport) -> list[str]:
        """Drop wildcard and duplicate names, recording an error for wildcards."""
        valid: list[str] = []
        seen: set[str] = set()
        for name in names:
            name = name.strip()
            if not name:
                continue
            if _has_wildcard(name):
                report.errors.append(InvalidArgumentError(f"Name '{name}' with wildcards is not supported"))
                continue
            if name.lower() in seen:
                continue
            seen.add(name.lower())
            valid.append(name)
        return valid

    def _select_repositories(self, repositories: list[str] | None) -> list[RepositoryEntry]:
        entries = self.registry.list(repositories)
        for name in repositories or []:
            if not _has_wildcard(name) and not any(e.name.lower() == name.lower() for e in entries):
                raise RepositoryNotFoundError(f"Repository '{name}' is not registered")
        return entries

    def _expand_names(self, source: SourceClient, entry: RepositoryEntry, names: list[str]) -> list[str]:
        expanded: list[str] = []
        for name in names:
            if _has_wildcard(name):
                matches = source.search(name)
                logger.debug(f"'{name}' matched {len(matches)} packages in {entry.name}")
                expanded.extend(m for m in matches if m.lower() not in {e.lower() for e in expanded})
            elif name.lower() not in {e.lower() for e in expanded}:
                expanded.append(name)
        return expanded

    def _find_candidates(
        self,
        source: SourceClient,
        entry: RepositoryEntry,
        names: list[str],
        tags: list[str],
        commands: list[str],
        prerelease: bool,
    ) -> list[PackageMetadata]:
        if names:
            candidates: list[PackageMetadata] = []
            for package_id in self._expand_names(source, entry, names):
                candidates.extend(source.list_versions(package_id, include_prerelease=prerelease))
            return candidates
        if tags:
            return source.search_tags(tags, include_prerelease=prerelease)

        # Feeds publish exported commands and DSC resources as capability tags
        found: dict[PackageIdentity, PackageMetadata] = {}
        for command in commands:
            for prefix in _COMMAND_SEARCH_PREFIXES:
                for metadata in source.search_tags([f"{prefix}{command}"], include_prerelease=prerelease):
                    found.setdefault(metadata.identity, metadata)
        return sorted(found.values(), key=lambda m: m.name.lower())

    def _approve(self, entry: RepositoryEntry, options: InstallOptions) -> bool:
        if entry.trusted or options.trust_repository or options.force:
            return True
        if self.prompt is None:
            return False
        return self.prompt(
            "Untrusted repository",
            f"You are installing the modules from an untrusted repository. If you trust this repository, "
            f"change its trusted value by running the repository set command. "
            f"Are you sure you want to install the modules from '{entry.name}'?",
        )

    def _install_loop(
        self,
        requests: dict[str, VersionRange | None],
        repositories: list[str] | None,
        options: InstallOptions,
        layout: InstallLayout,
        index: InstalledPackageIndex,
        report: InstallReport,
        save_path: Path | None = None,
    ) -> set[str]:
        """Try each repository in turn for the names still outstanding.

        Returns:
            Lower-cased names every selected repository reported as not found
        """
        outstanding = dict(requests)
        absent = {name.lower() for name in requests}
        entries = self._select_repositories(repositories)

        for entry in entries:
            if not outstanding:
                break
            self._check_cancelled()

            if not self._approve(entry, options):
                logger.warning(f"Skipping untrusted repository '{entry.name}'")
                report.errors.append(TrustDeniedError(f"Use of untrusted repository '{entry.name}' was declined"))
                absent -= {name.lower() for name in outstanding}
                continue

            source = self.source_factory(entry, options.credential)
            try:
                satisfied = self._install_from(
                    source, entry, outstanding, options, layout, index, report, save_path, absent
                )
            finally:
                source.close()

            for name in list(outstanding):
                if name.lower() in satisfied:
                    del outstanding[name]

        report.unsatisfied.extend(outstanding)
        if outstanding:
            logger.warning(f"Could not satisfy: {', '.join(outstanding)}")
        return absent

    def _install_from(
        self,
        source: SourceClient,
        entry: RepositoryEntry,
        outstanding: dict[str, VersionRange | None],
        options: InstallOptions,
        layout: InstallLayout,
        index: InstalledPackageIndex,
        report: InstallReport,
        save_path: Path | None,
        absent: set[str],
    ) -> set[str]:
        """Resolve and install outstanding names from one repository.

        Names this repository has any candidate for are removed from
        ``absent``, whether or not they end up installed.

        Returns:
            Lower-cased root names now satisfied
        """
        resolver = DependencyResolver(source, index.satisfies, repository=entry.name, cancel=self.cancel)
        roots: list[ResolvedPackage] = []
        packages: list[ResolvedPackage] = []
        queued: set[PackageIdentity] = set()

        for name, version_range in outstanding.items():
            try:
                resolution = resolver.resolve(
                    name,
                    version_range,
                    prerelease=options.prerelease,
                    reinstall=options.reinstall,
                    skip_dependency_check=options.skip_dependency_check,
                )
            except PackageNotFoundError as e:
                logger.debug(f"{e}; trying the next repository")
                continue
            except (DependencyResolutionError, SourceUnavailableError) as e:
                logger.warning(f"Could not resolve '{name}' from '{entry.name}': {e}")
                report.errors.append(e)
                absent.discard(name.lower())
                continue

            absent.discard(name.lower())
            roots.append(resolution.root)
            for package in resolution.packages:
                if package.identity not in queued:
                    queued.add(package.identity)
                    packages.append(package)

        if not packages:
            return set()

        transaction = InstallTransaction(
            layout,
            index,
            options,
            prompt=self.prompt,
            temp_root=self.temp_root,
            save_path=save_path,
            cancel=self.cancel,
        )
        result = transaction.install(packages)

        report.installed.extend(result.committed)
        report.skipped.extend(identity.id for identity in result.skipped if identity.id not in report.skipped)
        report.errors.extend(result.failed.values())

        satisfied = result.satisfied_names
        return {root.name.lower() for root in roots if root.name.lower() in satisfied}


def _newer_than(installed: NuGetVersion, version_range: VersionRange | None) -> VersionRange:
    """Narrow ``version_range`` to versions strictly above ``installed``."""
    if version_range is None:
        return VersionRange(installed, False, None, False)

    min_version, min_inclusive = installed, False
    if version_range.min_version is not None and version_range.min_version > installed:
        min_version, min_inclusive = version_range.min_version, version_range.min_inclusive
    return VersionRange(min_version, min_inclusive, version_range.max_version, version_range.max_inclusive)

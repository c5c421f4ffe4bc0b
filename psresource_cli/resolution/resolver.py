"""Dependency resolver.

Turns a package name plus version constraint into an ordered install set
against a single source. Dependencies are expanded with an explicit
worklist; each package id is selected and expanded at most once, so
diamonds are shared and cycles terminate. A later requirement the
selected version does not satisfy is reported as a conflict.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field

from ..errors import DependencyConflictError
from ..errors import DependencyResolutionError
from ..errors import InvalidVersionRangeError
from ..errors import OperationCancelledError
from ..errors import PackageNotFoundError
from ..errors import SourceUnavailableError
from ..models import DependencySpec
from ..models import PackageMetadata
from ..models import ResolvedPackage
from ..sources.base import SourceClient
from ..versioning import VersionRange
from ..versioning import pick_latest

logger = logging.getLogger(__name__)

# (package id, version range or None) -> is a satisfying version installed?
InstalledQuery = Callable[[str, VersionRange | None], bool]


@dataclass
class ResolutionResult:
    """Root package plus the dependencies that still need installing."""

    root: ResolvedPackage
    dependencies: list[ResolvedPackage] = field(default_factory=list)
    satisfied_locally: list[str] = field(default_factory=list)

    @property
    def packages(self) -> list[ResolvedPackage]:
        """Root first, then dependencies in pre-order discovery order."""
        return [self.root, *self.dependencies]


@dataclass
class _Requirement:
    package: ResolvedPackage
    version_range: VersionRange | None
    required_by: str


class DependencyResolver:
    """Resolve packages and their transitive dependencies against one source."""

    def __init__(
        self,
        source: SourceClient,
        installed_query: InstalledQuery,
        repository: str = "",
        cancel: threading.Event | None = None,
    ):
        self.source = source
        self.installed_query = installed_query
        self.repository = repository
        self.cancel = cancel

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelledError("Resolution cancelled")

    def _wrap(self, metadata: PackageMetadata, is_root: bool = False) -> ResolvedPackage:
        return ResolvedPackage(
            metadata=metadata,
            repository=self.repository,
            source_location=self.source.location,
            source=self.source,
            is_root=is_root,
        )

    def find_best(
        self, name: str, version_range: VersionRange | None, prerelease: bool
    ) -> PackageMetadata | None:
        """Return metadata for the newest version of ``name`` within ``version_range``."""
        self._check_cancelled()
        candidates = self.source.list_versions(name, include_prerelease=prerelease)
        by_version = {c.version: c for c in candidates}
        best = pick_latest(by_version.keys(), version_range)
        return by_version[best] if best is not None else None

    def resolve(
        self,
        name: str,
        version_range: VersionRange | None = None,
        prerelease: bool = False,
        reinstall: bool = False,
        skip_dependency_check: bool = False,
    ) -> ResolutionResult:
        """Resolve a package and, unless skipped, its dependency closure.

        Args:
            name: Package id
            version_range: Constraint on the root version; None picks the latest
            prerelease: Consider pre-release versions
            reinstall: Include dependencies even when already installed
            skip_dependency_check: Resolve the root only

        Returns:
            ResolutionResult with the root and the dependencies to install

        Raises:
            PackageNotFoundError: No version of the root satisfies the constraint
            SourceUnavailableError: The source failed while resolving the root
            DependencyResolutionError: A dependency could not be resolved, its
                declared range is malformed, or two requirements conflict
        """
        metadata = self.find_best(name, version_range, prerelease)
        if metadata is None:
            constraint = f" matching {version_range}" if version_range is not None else ""
            raise PackageNotFoundError(f"Package '{name}'{constraint} not found in repository '{self.repository}'")

        root = self._wrap(metadata, is_root=True)
        result = ResolutionResult(root=root)
        logger.debug(f"Resolved {root.identity} from {self.repository}")

        if skip_dependency_check:
            return result

        self._walk(result, prerelease, reinstall)
        return result

    def _walk(self, result: ResolutionResult, prerelease: bool, reinstall: bool) -> None:
        root = result.root
        chosen: dict[str, _Requirement] = {root.name.lower(): _Requirement(root, None, "")}

        # LIFO worklist with children pushed in reverse keeps pre-order discovery
        worklist: list[tuple[ResolvedPackage, DependencySpec]] = [
            (root, dep) for dep in reversed(root.metadata.dependencies)
        ]

        while worklist:
            parent, dependency = worklist.pop()
            key = dependency.id.lower()

            try:
                dep_range = dependency.parse_range()
            except InvalidVersionRangeError as e:
                raise DependencyResolutionError(
                    root.name,
                    dependency.id,
                    f"{parent.name} declares a malformed version range '{dependency.raw_range}' "
                    f"for dependency '{dependency.id}': {e}",
                ) from e

            existing = chosen.get(key)
            if existing is not None:
                if dep_range is not None and not dep_range.satisfies(existing.package.version):
                    raise DependencyConflictError(
                        root.name,
                        dependency.id,
                        f"Conflicting requirements for '{dependency.id}': {parent.name} requires {dep_range}, "
                        f"but {existing.package.version} was already selected"
                        + (f" for {existing.required_by} ({existing.version_range})" if existing.required_by else ""),
                    )
                continue

            if not reinstall and self.installed_query(dependency.id, dep_range):
                logger.debug(f"Dependency {dependency.id} {dep_range or ''} already installed")
                if dependency.id not in result.satisfied_locally:
                    result.satisfied_locally.append(dependency.id)
                continue

            try:
                metadata = self.find_best(dependency.id, dep_range, prerelease)
            except (SourceUnavailableError, PackageNotFoundError) as e:
                raise DependencyResolutionError(
                    root.name, dependency.id, f"Could not query dependency '{dependency.id}' of {parent.name}: {e}"
                ) from e

            if metadata is None:
                constraint = f" matching {dep_range}" if dep_range is not None else ""
                raise DependencyResolutionError(
                    root.name,
                    dependency.id,
                    f"Dependency '{dependency.id}'{constraint} required by {parent.name} "
                    f"not found in repository '{self.repository}'",
                )

            package = self._wrap(metadata)
            chosen[key] = _Requirement(package, dep_range, parent.name)
            result.dependencies.append(package)
            logger.debug(f"Resolved dependency {package.identity} for {parent.name}")

            worklist.extend((package, child) for child in reversed(metadata.dependencies))

"""Query and remove what is already installed.

Sidecar files are the source of truth: a package is installed exactly when
its sidecar exists and parses.
"""

from __future__ import annotations

import fnmatch
import logging
import shutil
from collections.abc import Iterator
from pathlib import Path

from ..errors import InvalidVersionRangeError
from ..errors import PackageInUseError
from ..errors import PackageNotFoundError
from ..models import InstalledPackageRecord
from ..models import PackageIdentity
from ..models import ResourceType
from ..versioning import NuGetVersion
from ..versioning import VersionRange
from .layout import MODULE_INFO_FILE
from .layout import SCRIPT_INFO_SUFFIX
from .layout import InstallLayout
from .layout import read_record

logger = logging.getLogger(__name__)


def _matches(name: str, patterns: list[str] | None) -> bool:
    if not patterns:
        return True
    return any(fnmatch.fnmatchcase(name.lower(), p.lower()) for p in patterns)


class InstalledPackageIndex:
    """Read-mostly view over one or more install roots.

    Every query rescans the sidecars, so results always reflect the tree
    as it is on disk.
    """

    def __init__(self, layouts: list[InstallLayout]):
        self.layouts = layouts

    def _records_in(self, layout: InstallLayout) -> Iterator[tuple[InstallLayout, Path, InstalledPackageRecord]]:
        if layout.modules_dir.is_dir():
            for info_path in sorted(layout.modules_dir.glob(f"*/*/{MODULE_INFO_FILE}")):
                record = read_record(info_path)
                if record is not None:
                    yield layout, info_path, record

        if layout.script_infos_dir.is_dir():
            for info_path in sorted(layout.script_infos_dir.glob(f"*{SCRIPT_INFO_SUFFIX}")):
                record = read_record(info_path)
                if record is not None:
                    yield layout, info_path, record

    def _entries(self) -> Iterator[tuple[InstallLayout, Path, InstalledPackageRecord]]:
        for layout in self.layouts:
            yield from self._records_in(layout)

    def get(self, names: list[str] | None = None, version_range: VersionRange | None = None) -> list[InstalledPackageRecord]:
        """Return installed records, filtered by name patterns and version range.

        Results are ordered by name, then newest version first.
        """
        records = [
            record
            for _, _, record in self._entries()
            if _matches(record.name, names)
            and (version_range is None or version_range.satisfies(record.parsed_version))
        ]
        records.sort(key=lambda r: r.parsed_version, reverse=True)
        records.sort(key=lambda r: r.name.lower())
        return records

    def installed_versions(self, name: str) -> list[NuGetVersion]:
        return [
            record.parsed_version for _, _, record in self._entries() if record.name.lower() == name.lower()
        ]

    def is_installed(self, identity: PackageIdentity) -> bool:
        return identity.version in self.installed_versions(identity.id)

    def satisfies(self, name: str, version_range: VersionRange | None) -> bool:
        """True when some installed version of ``name`` lies in ``version_range``.

        A None range is satisfied by any installed version.
        """
        versions = self.installed_versions(name)
        if version_range is None:
            return bool(versions)
        return any(version_range.satisfies(v) for v in versions)

    def capability_owners(self) -> dict[str, set[str]]:
        """Map each exported command name (lower-cased) to the packages exporting it."""
        owners: dict[str, set[str]] = {}
        for _, _, record in self._entries():
            for command in record.includes.exported_names():
                owners.setdefault(command, set()).add(record.name)
        return owners

    def dependents_of(self, name: str, version: NuGetVersion | None = None) -> list[InstalledPackageRecord]:
        """Installed packages declaring a dependency on ``name`` (optionally on this version)."""
        dependents = []
        for _, _, record in self._entries():
            if record.name.lower() == name.lower():
                continue
            for dependency in record.dependencies:
                if dependency.name.lower() != name.lower():
                    continue
                if version is not None and dependency.version_range:
                    try:
                        if not VersionRange.parse(dependency.version_range).satisfies(version):
                            continue
                    except InvalidVersionRangeError:
                        pass
                dependents.append(record)
                break
        return dependents

    def uninstall(
        self,
        name: str,
        version_range: VersionRange | None = None,
        skip_dependency_check: bool = False,
    ) -> list[InstalledPackageRecord]:
        """Remove installed versions of a package.

        Args:
            name: Package name (exact, case-insensitive)
            version_range: Versions to remove; None removes every version
            skip_dependency_check: Remove even when other packages depend on it

        Returns:
            Records of the removed versions

        Raises:
            PackageNotFoundError: Nothing installed matches
            PackageInUseError: Another installed package depends on a matching version
        """
        targets = [
            (layout, info_path, record)
            for layout, info_path, record in self._entries()
            if record.name.lower() == name.lower()
            and (version_range is None or version_range.satisfies(record.parsed_version))
        ]
        if not targets:
            raise PackageNotFoundError(f"No installed version of '{name}' matches {version_range or 'any version'}")

        if not skip_dependency_check:
            for _, _, record in targets:
                dependents = self.dependents_of(record.name, record.parsed_version)
                if dependents:
                    names = ", ".join(sorted({d.name for d in dependents}))
                    raise PackageInUseError(
                        f"Cannot uninstall '{record.name}' {record.version}: required by {names}. "
                        f"Use the skip-dependency-check option to remove it anyway."
                    )

        removed = []
        for layout, info_path, record in targets:
            if record.type == ResourceType.SCRIPT:
                layout.script_path(record.name).unlink(missing_ok=True)
                info_path.unlink(missing_ok=True)
            else:
                version_dir = info_path.parent
                shutil.rmtree(version_dir)
                package_dir = version_dir.parent
                if package_dir.is_dir() and not any(package_dir.iterdir()):
                    package_dir.rmdir()
            logger.info(f"Uninstalled {record.name} {record.version}")
            removed.append(record)
        return removed

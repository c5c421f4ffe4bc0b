"""Local directory feed: a folder of ``<id>.<version>.nupkg`` files."""

import fnmatch
import logging
import shutil
from pathlib import Path

from ..errors import PackageNotFoundError
from ..errors import SourceUnavailableError
from ..models import PackageIdentity
from ..models import PackageMetadata
from ..versioning import NuGetVersion
from .nuspec import read_nupkg_metadata

logger = logging.getLogger(__name__)


class LocalDirectorySource:
    """Source client backed by a directory of package archives."""

    def __init__(self, path: str | Path):
        """Initialize with the feed directory.

        Args:
            path: Directory path, optionally prefixed with ``file://``
        """
        if isinstance(path, str) and path.startswith("file://"):
            path = path[7:]
        self.path = Path(path).expanduser()
        self.location = str(self.path)

    def _archives_for(self, package_id: str) -> list[tuple[NuGetVersion, Path]]:
        if not self.path.is_dir():
            raise SourceUnavailableError(f"Local repository path not found: {self.path}")

        prefix = f"{package_id.lower()}."
        found = []
        for archive in self.path.glob("*.nupkg"):
            name = archive.name[: -len(".nupkg")]
            if not name.lower().startswith(prefix):
                continue
            version = NuGetVersion.try_parse(name[len(prefix) :])
            if version is not None:
                found.append((version, archive))
        return found

    def list_versions(self, package_id: str, include_prerelease: bool = False) -> list[PackageMetadata]:
        results = []
        for version, archive in self._archives_for(package_id):
            if version.is_prerelease and not include_prerelease:
                continue
            metadata = read_nupkg_metadata(archive)
            if metadata.name.lower() != package_id.lower():
                logger.debug(f"Skipping {archive.name}: nuspec id is {metadata.name}")
                continue
            results.append(metadata)

        logger.debug(f"Found {len(results)} versions of {package_id} in {self.path}")
        return results

    def search(self, pattern: str) -> list[str]:
        """Return ids of packages in the feed matching a wildcard pattern."""
        if not self.path.is_dir():
            raise SourceUnavailableError(f"Local repository path not found: {self.path}")
        ids = {read_nupkg_metadata(archive).name for archive in self.path.glob("*.nupkg")}
        return sorted((i for i in ids if fnmatch.fnmatchcase(i.lower(), pattern.lower())), key=str.lower)

    def search_tags(self, tags: list[str], include_prerelease: bool = False) -> list[PackageMetadata]:
        if not self.path.is_dir():
            raise SourceUnavailableError(f"Local repository path not found: {self.path}")

        wanted = {t.lower() for t in tags}
        results = []
        for archive in self.path.glob("*.nupkg"):
            metadata = read_nupkg_metadata(archive)
            if metadata.version.is_prerelease and not include_prerelease:
                continue
            if wanted <= {t.lower() for t in metadata.tags}:
                results.append(metadata)

        logger.debug(f"Found {len(results)} package versions tagged {', '.join(tags)} in {self.path}")
        return sorted(results, key=lambda m: (m.name.lower(), m.version))

    def download(self, identity: PackageIdentity, destination_dir: Path) -> Path:
        for version, archive in self._archives_for(identity.id):
            if version == identity.version:
                destination_dir.mkdir(parents=True, exist_ok=True)
                target = destination_dir / f"{identity.id.lower()}.{identity.version}.nupkg"
                shutil.copyfile(archive, target)
                logger.debug(f"Copied {archive} to {target}")
                return target

        raise PackageNotFoundError(f"Package '{identity}' not found in {self.path}")

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"LocalDirectorySource({self.path})"

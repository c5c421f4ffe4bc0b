"""Protocol for package sources.

The resolver and the installer only depend on this interface; whether a
repository is a remote feed or a local directory is decided by
``create_source_client``.
"""

from pathlib import Path
from typing import Protocol

from ..models import PackageIdentity
from ..models import PackageMetadata


class SourceClient(Protocol):
    """Query package metadata and fetch package content from one repository."""

    location: str

    def list_versions(self, package_id: str, include_prerelease: bool = False) -> list[PackageMetadata]:
        """Return metadata for every visible version of a package.

        Args:
            package_id: Package id (case-insensitive)
            include_prerelease: Include pre-release versions

        Returns:
            Metadata per version, in no particular order. Empty when the
            package does not exist at this source.

        Raises:
            SourceUnavailableError: The source could not be queried
        """
        ...

    def download(self, identity: PackageIdentity, destination_dir: Path) -> Path:
        """Write the package archive into ``destination_dir``.

        Returns:
            Path to the downloaded ``.nupkg`` file

        Raises:
            PackageNotFoundError: The version does not exist at this source
            SourceUnavailableError: The download failed
        """
        ...

    def search(self, pattern: str) -> list[str]:
        """Return ids of packages whose id matches a wildcard pattern.

        Raises:
            SourceUnavailableError: The source could not be queried
        """
        ...

    def search_tags(self, tags: list[str], include_prerelease: bool = False) -> list[PackageMetadata]:
        """Return metadata for package versions carrying every one of ``tags``.

        Tags compare case-insensitively.

        Raises:
            SourceUnavailableError: The source could not be queried
        """
        ...

    def close(self) -> None:
        """Release network connections or other resources."""
        ...

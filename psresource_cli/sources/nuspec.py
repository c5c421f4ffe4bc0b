"""Read package metadata out of ``.nuspec`` documents and ``.nupkg`` archives."""

import logging
import zipfile
from pathlib import Path
from xml.etree import ElementTree

from ..errors import SourceUnavailableError
from ..models import DependencySpec
from ..models import PackageIdentity
from ..models import PackageMetadata
from ..versioning import NuGetVersion

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ElementTree.Element, name: str) -> str:
    for child in element:
        if _local_name(child.tag) == name:
            return (child.text or "").strip()
    return ""


def _find_child(element: ElementTree.Element, name: str) -> ElementTree.Element | None:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def _parse_dependencies(metadata: ElementTree.Element) -> list[DependencySpec]:
    container = _find_child(metadata, "dependencies")
    if container is None:
        return []

    dependencies: list[DependencySpec] = []
    seen: set[str] = set()
    # Dependencies are either listed directly or split into framework groups
    for element in container.iter():
        if _local_name(element.tag) != "dependency":
            continue
        dep_id = element.get("id", "").strip()
        if not dep_id or dep_id.lower() in seen:
            continue
        seen.add(dep_id.lower())
        dependencies.append(DependencySpec(id=dep_id, raw_range=element.get("version")))
    return dependencies


def parse_nuspec(content: bytes | str, origin: str = "<nuspec>") -> PackageMetadata:
    """Parse a nuspec document.

    Args:
        content: Raw XML
        origin: Where the document came from, for error messages

    Returns:
        PackageMetadata for the package described

    Raises:
        SourceUnavailableError: The document is not a usable nuspec
    """
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as e:
        raise SourceUnavailableError(f"Could not parse nuspec from {origin}: {e}") from e

    metadata = _find_child(root, "metadata")
    if metadata is None:
        raise SourceUnavailableError(f"nuspec from {origin} has no <metadata> element")

    package_id = _child_text(metadata, "id")
    version = NuGetVersion.try_parse(_child_text(metadata, "version"))
    if not package_id or version is None:
        raise SourceUnavailableError(f"nuspec from {origin} is missing a valid id or version")

    tags = _child_text(metadata, "tags")
    return PackageMetadata(
        identity=PackageIdentity(package_id, version),
        description=_child_text(metadata, "description"),
        author=_child_text(metadata, "authors"),
        tags=tags.split() if tags else [],
        dependencies=_parse_dependencies(metadata),
        require_license_acceptance=_child_text(metadata, "requireLicenseAcceptance").lower() == "true",
        license_url=_child_text(metadata, "licenseUrl") or None,
        project_url=_child_text(metadata, "projectUrl") or None,
    )


def read_nupkg_metadata(nupkg_path: Path) -> PackageMetadata:
    """Read the nuspec stored at the root of a ``.nupkg`` archive."""
    try:
        with zipfile.ZipFile(nupkg_path) as archive:
            nuspec_names = [n for n in archive.namelist() if n.endswith(".nuspec") and "/" not in n]
            if not nuspec_names:
                raise SourceUnavailableError(f"{nupkg_path.name} does not contain a .nuspec file")
            content = archive.read(nuspec_names[0])
    except (zipfile.BadZipFile, OSError) as e:
        raise SourceUnavailableError(f"Could not read package archive {nupkg_path}: {e}") from e

    return parse_nuspec(content, origin=str(nupkg_path))

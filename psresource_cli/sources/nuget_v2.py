"""Remote NuGet v2 (OData) feed client, the protocol served by PowerShell Gallery."""

from __future__ import annotations

import fnmatch
import logging
import re
from datetime import datetime
from pathlib import Path
from xml.etree import ElementTree

import httpx

from ..errors import PackageNotFoundError
from ..errors import SourceUnavailableError
from ..models import Credential
from ..models import DependencySpec
from ..models import PackageIdentity
from ..models import PackageMetadata
from ..versioning import NuGetVersion

logger = logging.getLogger(__name__)

ATOM_NS = "{http://www.w3.org/2005/Atom}"
METADATA_NS = "{http://schemas.microsoft.com/ado/2007/08/dataservices/metadata}"
DATA_NS = "{http://schemas.microsoft.com/ado/2007/08/dataservices}"

# Safety net against feeds whose next links loop
MAX_PAGES = 100


def parse_dependency_string(value: str) -> list[DependencySpec]:
    """Parse the v2 ``Dependencies`` property: ``Id:range:framework|Id:range:framework``."""
    dependencies: list[DependencySpec] = []
    seen: set[str] = set()
    for item in value.split("|"):
        if not item.strip():
            continue
        parts = item.split(":")
        dep_id = parts[0].strip()
        if not dep_id or dep_id.lower() in seen:
            continue
        seen.add(dep_id.lower())
        raw_range = parts[1].strip() if len(parts) > 1 and parts[1].strip() else None
        dependencies.append(DependencySpec(id=dep_id, raw_range=raw_range))
    return dependencies


def _parse_datetime(value: str) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_feed(content: bytes) -> tuple[list[PackageMetadata], str | None]:
    """Parse one page of an OData Atom feed.

    Returns:
        Tuple of (packages on this page, URL of the next page or None)

    Raises:
        SourceUnavailableError: The response is not an Atom feed
    """
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as e:
        raise SourceUnavailableError(f"Feed returned malformed XML: {e}") from e

    packages = []
    for entry in root.iter(f"{ATOM_NS}entry"):
        properties = entry.find(f"{METADATA_NS}properties")
        if properties is None:
            continue

        def prop(name: str, props: ElementTree.Element = properties) -> str:
            element = props.find(f"{DATA_NS}{name}")
            return (element.text or "").strip() if element is not None else ""

        package_id = prop("Id") or (entry.findtext(f"{ATOM_NS}title") or "").strip()
        version = NuGetVersion.try_parse(prop("NormalizedVersion") or prop("Version"))
        if not package_id or version is None:
            logger.debug(f"Skipping feed entry without id or version: {package_id!r}")
            continue

        tags = prop("Tags")
        packages.append(
            PackageMetadata(
                identity=PackageIdentity(package_id, version),
                description=prop("Description"),
                author=prop("Authors"),
                tags=tags.split() if tags else [],
                dependencies=parse_dependency_string(prop("Dependencies")),
                require_license_acceptance=prop("RequireLicenseAcceptance").lower() == "true",
                license_url=prop("LicenseUrl") or None,
                project_url=prop("ProjectUrl") or None,
                published=_parse_datetime(prop("Published")),
            )
        )

    next_url = None
    for link in root.findall(f"{ATOM_NS}link"):
        if link.get("rel") == "next":
            next_url = link.get("href")
    return packages, next_url


class NuGetV2Source:
    """Source client for NuGet v2 OData feeds."""

    def __init__(
        self,
        url: str,
        credential: Credential | None = None,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        """Initialize the feed client.

        Args:
            url: Feed root, e.g. https://www.powershellgallery.com/api/v2
            credential: Optional basic-auth credential
            client: Pre-configured httpx client (tests inject a mock transport)
            timeout: Request timeout in seconds
        """
        self.location = url.rstrip("/")
        auth = (credential.username, credential.password) if credential else None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True, auth=auth)

    def list_versions(self, package_id: str, include_prerelease: bool = False) -> list[PackageMetadata]:
        params = {"id": f"'{package_id}'"}
        if not include_prerelease:
            params["$filter"] = "IsPrerelease eq false"

        url: str | None = f"{self.location}/FindPackagesById()"
        results: list[PackageMetadata] = []
        pages = 0
        while url and pages < MAX_PAGES:
            logger.debug(f"Querying {url}")
            try:
                response = self._client.get(url, params=params if pages == 0 else None)
            except httpx.HTTPError as e:
                raise SourceUnavailableError(f"Failed to query {self.location}: {e}") from e

            if response.status_code == 404:
                return []
            if response.is_error:
                raise SourceUnavailableError(
                    f"Feed {self.location} returned HTTP {response.status_code} for '{package_id}'"
                )

            page, url = parse_feed(response.content)
            results.extend(p for p in page if p.name.lower() == package_id.lower())
            pages += 1

        if not include_prerelease:
            results = [p for p in results if not p.version.is_prerelease]
        return results

    def search(self, pattern: str) -> list[str]:
        """Return ids of packages whose id matches a wildcard pattern.

        The feed is asked for ids containing the longest literal fragment of
        the pattern; the pattern itself is applied locally.
        """
        fragments = [f for f in re.split(r"[*?]+", pattern) if f]
        term = max(fragments, key=len) if fragments else ""
        params = {"searchTerm": f"'{term}'", "includePrerelease": "false"}

        url: str | None = f"{self.location}/Search()"
        ids: dict[str, str] = {}
        pages = 0
        while url and pages < MAX_PAGES:
            try:
                response = self._client.get(url, params=params if pages == 0 else None)
            except httpx.HTTPError as e:
                raise SourceUnavailableError(f"Failed to search {self.location}: {e}") from e
            if response.is_error:
                raise SourceUnavailableError(f"Feed {self.location} returned HTTP {response.status_code} for search")

            page, url = parse_feed(response.content)
            for package in page:
                if fnmatch.fnmatchcase(package.name.lower(), pattern.lower()):
                    ids.setdefault(package.name.lower(), package.name)
            pages += 1

        return sorted(ids.values(), key=str.lower)

    def search_tags(self, tags: list[str], include_prerelease: bool = False) -> list[PackageMetadata]:
        """Query ``Search()`` with ``tag:`` terms.

        The feed's search is fuzzy, so every tag is checked again locally.
        """
        term = " ".join(f"tag:{tag}" for tag in tags)
        params = {"searchTerm": f"'{term}'", "includePrerelease": "true" if include_prerelease else "false"}
        wanted = {t.lower() for t in tags}

        url: str | None = f"{self.location}/Search()"
        results: list[PackageMetadata] = []
        pages = 0
        while url and pages < MAX_PAGES:
            logger.debug(f"Querying {url}")
            try:
                response = self._client.get(url, params=params if pages == 0 else None)
            except httpx.HTTPError as e:
                raise SourceUnavailableError(f"Failed to search {self.location}: {e}") from e
            if response.is_error:
                raise SourceUnavailableError(f"Feed {self.location} returned HTTP {response.status_code} for tag search")

            page, url = parse_feed(response.content)
            results.extend(p for p in page if wanted <= {t.lower() for t in p.tags})
            pages += 1

        if not include_prerelease:
            results = [p for p in results if not p.version.is_prerelease]
        return results

    def download(self, identity: PackageIdentity, destination_dir: Path) -> Path:
        url = f"{self.location}/package/{identity.id}/{identity.version}"
        target = destination_dir / f"{identity.id.lower()}.{identity.version}.nupkg"
        destination_dir.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Downloading {url}")
        try:
            with self._client.stream("GET", url) as response:
                if response.status_code == 404:
                    raise PackageNotFoundError(f"Package '{identity}' not found at {self.location}")
                if response.is_error:
                    raise SourceUnavailableError(f"Download of '{identity}' failed with HTTP {response.status_code}")
                with target.open("wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"Download of '{identity}' failed: {e}") from e

        return target

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"NuGetV2Source({self.location})"

"""Core data types shared by the registry, resolver and installer."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from pydantic import BaseModel
from pydantic import Field

from .versioning import NuGetVersion
from .versioning import VersionRange

if TYPE_CHECKING:
    from .sources.base import SourceClient

MIN_PRIORITY = 0
MAX_PRIORITY = 50
DEFAULT_PRIORITY = 50

# Tag prefixes that advertise what a package exports
CAPABILITY_TAG_PREFIXES: dict[str, str] = {
    "PSCommand_": "command",
    "PSCmdlet_": "cmdlet",
    "PSFunction_": "function",
    "PSDscResource_": "dsc_resource",
    "PSRoleCapability_": "role_capability",
    "PSWorkflow_": "workflow",
}


class InstallScope(str, Enum):
    """Which root of the install tree a run targets."""

    CURRENT_USER = "CurrentUser"
    ALL_USERS = "AllUsers"


class ResourceType(str, Enum):
    MODULE = "module"
    SCRIPT = "script"


class RepositoryEntry(BaseModel):
    """A registered package source."""

    name: str = Field(..., description="Unique repository name (case-insensitive)")
    url: str = Field(..., description="Feed endpoint or local directory")
    priority: int = Field(DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY, description="Lower is searched first")
    trusted: bool = Field(False, description="Install without confirmation")

    @property
    def is_local(self) -> bool:
        parsed = urlparse(self.url)
        # Single-letter schemes are Windows drive letters
        return parsed.scheme in ("", "file") or len(parsed.scheme) == 1

    @property
    def local_path(self) -> Path:
        parsed = urlparse(self.url)
        if parsed.scheme == "file":
            return Path(parsed.path)
        return Path(self.url).expanduser()

    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.name.lower())


@dataclass(frozen=True)
class PackageIdentity:
    """Package id plus version; ids compare case-insensitively."""

    id: str
    version: NuGetVersion

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageIdentity):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version))

    def __str__(self) -> str:
        return f"{self.id}.{self.version}"


@dataclass(frozen=True)
class DependencySpec:
    """A declared dependency.

    ``raw_range`` keeps the declared text. An empty range means "any
    version"; a malformed one fails in ``parse_range``.
    """

    id: str
    raw_range: str | None = None

    @property
    def has_range(self) -> bool:
        return bool(self.raw_range and self.raw_range.strip())

    def parse_range(self) -> VersionRange | None:
        if not self.has_range:
            return None
        return VersionRange.parse(self.raw_range)


@dataclass
class PackageMetadata:
    """Metadata a source reports for one package version."""

    identity: PackageIdentity
    description: str = ""
    author: str = ""
    tags: list[str] = field(default_factory=list)
    dependencies: list[DependencySpec] = field(default_factory=list)
    require_license_acceptance: bool = False
    license_url: str | None = None
    project_url: str | None = None
    published: datetime | None = None

    @property
    def name(self) -> str:
        return self.identity.id

    @property
    def version(self) -> NuGetVersion:
        return self.identity.version


@dataclass
class ResolvedPackage:
    """A package chosen for installation, plus where to fetch it from."""

    metadata: PackageMetadata
    repository: str
    source_location: str
    source: SourceClient
    is_root: bool = False

    @property
    def identity(self) -> PackageIdentity:
        return self.metadata.identity

    @property
    def name(self) -> str:
        return self.metadata.identity.id

    @property
    def version(self) -> NuGetVersion:
        return self.metadata.identity.version


class CapabilityIndex(BaseModel):
    """Names a package exports, parsed from its capability tags."""

    command: list[str] = Field(default_factory=list)
    cmdlet: list[str] = Field(default_factory=list)
    function: list[str] = Field(default_factory=list)
    dsc_resource: list[str] = Field(default_factory=list)
    role_capability: list[str] = Field(default_factory=list)
    workflow: list[str] = Field(default_factory=list)

    @classmethod
    def from_tags(cls, tags: list[str]) -> CapabilityIndex:
        index = cls()
        for tag in tags:
            for prefix, kind in CAPABILITY_TAG_PREFIXES.items():
                if tag.lower().startswith(prefix.lower()) and len(tag) > len(prefix):
                    getattr(index, kind).append(tag[len(prefix) :])
                    break
        return index

    def exported_names(self) -> set[str]:
        """Lower-cased names that can collide with another package's commands."""
        names = self.command + self.cmdlet + self.function + self.dsc_resource + self.role_capability + self.workflow
        return {name.lower() for name in names}


class InstalledDependency(BaseModel):
    name: str
    version_range: str | None = None


class InstalledPackageRecord(BaseModel):
    """Sidecar metadata written next to installed content."""

    name: str
    version: str
    type: ResourceType = ResourceType.MODULE
    description: str = ""
    author: str = ""
    dependencies: list[InstalledDependency] = Field(default_factory=list)
    repository: str = ""
    repository_source_location: str = ""
    installed_date: datetime
    installed_location: str = ""
    tags: list[str] = Field(default_factory=list)
    includes: CapabilityIndex = Field(default_factory=CapabilityIndex)

    @property
    def parsed_version(self) -> NuGetVersion:
        return NuGetVersion.parse(self.version)

    @property
    def identity(self) -> PackageIdentity:
        return PackageIdentity(self.name, self.parsed_version)

    @classmethod
    def from_resolved(
        cls,
        package: ResolvedPackage,
        resource_type: ResourceType,
        installed_location: Path,
        installed_date: datetime,
    ) -> InstalledPackageRecord:
        metadata = package.metadata
        return cls(
            name=metadata.name,
            version=str(metadata.version),
            type=resource_type,
            description=metadata.description,
            author=metadata.author,
            dependencies=[InstalledDependency(name=d.id, version_range=d.raw_range) for d in metadata.dependencies],
            repository=package.repository,
            repository_source_location=package.source_location,
            installed_date=installed_date,
            installed_location=str(installed_location),
            tags=list(metadata.tags),
            includes=CapabilityIndex.from_tags(metadata.tags),
        )


@dataclass
class Credential:
    username: str
    password: str


@dataclass
class InstallOptions:
    """Caller switches for an install, save or update run."""

    prerelease: bool = False
    reinstall: bool = False
    force: bool = False
    trust_repository: bool = False
    accept_license: bool = False
    no_clobber: bool = False
    skip_dependency_check: bool = False
    save_only: bool = False
    as_nupkg: bool = False
    include_xml: bool = False
    credential: Credential | None = None

    @property
    def license_pre_accepted(self) -> bool:
        return self.accept_license or self.force

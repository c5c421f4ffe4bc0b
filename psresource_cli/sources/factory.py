"""Pick a source client for a registered repository."""

from ..models import Credential
from ..models import RepositoryEntry
from .base import SourceClient
from .local import LocalDirectorySource
from .nuget_v2 import NuGetV2Source


def create_source_client(entry: RepositoryEntry, credential: Credential | None = None) -> SourceClient:
    """Create the client matching a repository's URL.

    Filesystem paths and ``file://`` URIs map to a local directory feed;
    http(s) URLs map to a NuGet v2 feed.
    """
    if entry.is_local:
        return LocalDirectorySource(entry.local_path)
    return NuGetV2Source(entry.url, credential=credential)

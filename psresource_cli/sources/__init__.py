"""Package sources - where metadata and package archives come from.

Public API:
- SourceClient: Protocol implemented by every source
- LocalDirectorySource: Directory of .nupkg files
- NuGetV2Source: Remote NuGet v2 (OData) feed
- create_source_client: Choose an implementation for a repository entry
"""

from .base import SourceClient
from .factory import create_source_client
from .local import LocalDirectorySource
from .nuget_v2 import NuGetV2Source

__all__ = [
    "SourceClient",
    "LocalDirectorySource",
    "NuGetV2Source",
    "create_source_client",
]

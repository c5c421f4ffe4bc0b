"""Exception taxonomy for the package-management engine.

User input problems abort the offending input only. Not-found errors are
non-fatal and make the orchestrator fall through to the next repository.
Install errors fail a single package while its siblings continue.
"""

from __future__ import annotations


class PSResourceError(Exception):
    """Base class for all package-management errors."""


class UserInputError(PSResourceError):
    """Raised when caller-supplied input is malformed or refers to nothing."""


class InvalidArgumentError(UserInputError):
    """Raised when a required argument is empty or out of range."""


class InvalidVersionRangeError(UserInputError):
    """Raised when a version or version range string cannot be parsed."""


class RepositoryNotFoundError(UserInputError):
    """Raised when a named repository is not registered."""


class DuplicateRepositoryError(UserInputError):
    """Raised when registering a repository whose name already exists."""


class RepositoryStoreError(PSResourceError):
    """Raised when the repository store cannot be parsed or written."""


class PackageNotFoundError(PSResourceError):
    """Raised when a package or a matching version is absent at a source."""


class SourceUnavailableError(PSResourceError):
    """Raised when a source cannot be reached or returns unusable metadata."""


class TrustDeniedError(PSResourceError):
    """Raised when the caller declines to use an untrusted repository."""


class DependencyResolutionError(PSResourceError):
    """Raised when a dependency of a package cannot be resolved."""

    def __init__(self, package: str, dependency: str, message: str):
        self.package = package
        self.dependency = dependency
        super().__init__(message)


class DependencyConflictError(DependencyResolutionError):
    """Raised when two dependents require incompatible versions of one package."""


class InstallError(PSResourceError):
    """Raised when a single package fails to install."""

    def __init__(self, package: str, message: str):
        self.package = package
        super().__init__(message)


class DownloadError(InstallError):
    """Raised when package content could not be materialized in staging."""


class LicenseNotFoundError(InstallError):
    """Raised when license acceptance is required but License.txt is missing."""


class LicenseDeclinedError(InstallError):
    """Raised when the caller did not accept a required license."""


class ClobberError(InstallError):
    """Raised when a package exports commands already owned by another package."""

    def __init__(self, package: str, commands: list[str], owners: list[str]):
        self.commands = commands
        self.owners = owners
        super().__init__(
            package,
            f"{package} package could not be installed: the following commands are already "
            f"available on this system: '{', '.join(commands)}' (provided by {', '.join(owners)}). "
            f"Remove the no-clobber option to install '{package}' anyway.",
        )


class CommitError(InstallError):
    """Raised when staged content cannot be moved into the install tree."""


class PackageInUseError(PSResourceError):
    """Raised when uninstalling a package other installed packages depend on."""


class OperationCancelledError(PSResourceError):
    """Raised when the caller signalled cancellation."""

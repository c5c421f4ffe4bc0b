"""Installation transaction - stage, validate and commit resolved packages.

Each package moves through

    STAGING -> DOWNLOADED -> LICENSE_CHECK -> CLOBBER_CHECK -> METADATA_WRITTEN -> COMMITTED

and any step may end in FAILED. The staging directory is the unit of
atomicity: nothing outside it is touched until commit, and it is removed
whether the package committed or failed. There is no rollback across
packages; packages committed before a later failure stay installed.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import threading
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from pathlib import Path
from urllib.parse import unquote

from ..errors import ClobberError
from ..errors import CommitError
from ..errors import DownloadError
from ..errors import InstallError
from ..errors import LicenseDeclinedError
from ..errors import LicenseNotFoundError
from ..errors import OperationCancelledError
from ..errors import PSResourceError
from ..models import CapabilityIndex
from ..models import InstalledPackageRecord
from ..models import InstallOptions
from ..models import PackageIdentity
from ..models import ResolvedPackage
from ..models import ResourceType
from .installed import InstalledPackageIndex
from .layout import MANIFEST_EXT
from .layout import MODULE_INFO_FILE
from .layout import SCRIPT_EXT
from .layout import SCRIPT_INFO_SUFFIX
from .layout import SCRIPT_INFOS_DIR
from .layout import InstallLayout
from .layout import write_record

logger = logging.getLogger(__name__)

# (title, message) -> accepted
Prompt = Callable[[str, str], bool]

LICENSE_FILE = "License.txt"
_LICENSE_REQUIRED_RE = re.compile(r"^\s*RequireLicenseAcceptance\s*=\s*\$true", re.IGNORECASE | re.MULTILINE)


def _find_file(directory: Path, name: str) -> Path | None:
    """Case-insensitive lookup of a file directly inside ``directory``."""
    exact = directory / name
    if exact.is_file():
        return exact
    for candidate in directory.iterdir():
        if candidate.is_file() and candidate.name.lower() == name.lower():
            return candidate
    return None


def extract_nupkg(nupkg: Path, destination: Path) -> None:
    """Unpack a package archive, decoding NuGet's URI-escaped entry names.

    Raises:
        DownloadError: The archive is corrupt or an entry escapes ``destination``
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    try:
        with zipfile.ZipFile(nupkg) as archive:
            for info in archive.infolist():
                relative = unquote(info.filename)
                target = (root / relative).resolve()
                if not target.is_relative_to(root):
                    raise DownloadError(nupkg.name, f"Archive entry '{info.filename}' escapes the staging directory")
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(info) as src, target.open("wb") as dst:
                    shutil.copyfileobj(src, dst)
    except zipfile.BadZipFile as e:
        raise DownloadError(nupkg.name, f"{nupkg.name} is not a valid package archive: {e}") from e


def remove_packaging_residue(content_dir: Path, identity: PackageIdentity) -> None:
    """Delete NuGet packaging side-files so only package content remains."""
    base = f"{identity.id}.{identity.version}"
    residue_files = {
        f"{base}.nupkg".lower(),
        f"{base}.nupkg.sha512".lower(),
        f"{base}.nupkg.metadata".lower(),
        f"{identity.id}.nuspec".lower(),
        "[content_types].xml",
        ".signature.p7s",
    }
    residue_dirs = {"_rels", "package"}

    for entry in list(content_dir.iterdir()):
        name = entry.name.lower()
        if entry.is_file() and name in residue_files:
            logger.debug(f"Deleting '{entry}'")
            entry.unlink()
        elif entry.is_dir() and name in residue_dirs:
            logger.debug(f"Deleting '{entry}'")
            shutil.rmtree(entry)


@dataclass
class TransactionResult:
    """What happened to each package handed to a transaction."""

    names: list[str] = field(default_factory=list)
    committed: list[InstalledPackageRecord] = field(default_factory=list)
    skipped: list[PackageIdentity] = field(default_factory=list)
    failed: dict[PackageIdentity, PSResourceError] = field(default_factory=dict)

    @property
    def satisfied_names(self) -> set[str]:
        """Lower-cased names that are now present (committed or already installed)."""
        return {r.name.lower() for r in self.committed} | {i.id.lower() for i in self.skipped}

    @property
    def unsatisfied(self) -> set[str]:
        """Names in the input set that were neither committed nor already present."""
        satisfied = self.satisfied_names
        return {name for name in self.names if name.lower() not in satisfied}


class InstallTransaction:
    """Install a resolved package set into one install root.

    Contract:
    - Inputs: resolved packages (root first), an install layout, caller options
    - Outputs: TransactionResult; never raises for a single package failure
    - Side Effects: temp staging directories; writes under the layout root
      (or the save path when saving)
    - Errors: OperationCancelledError aborts the remaining packages
    """

    def __init__(
        self,
        layout: InstallLayout,
        index: InstalledPackageIndex,
        options: InstallOptions,
        prompt: Prompt | None = None,
        temp_root: Path | None = None,
        save_path: Path | None = None,
        cancel: threading.Event | None = None,
    ):
        self.layout = layout
        self.index = index
        self.options = options
        self.prompt = prompt
        self.temp_root = temp_root
        self.save_path = save_path
        self.cancel = cancel

        if options.save_only and save_path is None:
            raise ValueError("save_path is required when saving")

    def install(self, packages: list[ResolvedPackage]) -> TransactionResult:
        result = TransactionResult(names=[p.name for p in packages])

        for package in packages:
            if self._already_present(package):
                logger.warning(
                    f"Resource '{package.name}' with version '{package.version}' is already installed. "
                    f"Use the reinstall option to install it again."
                )
                result.skipped.append(package.identity)
                continue

            try:
                record = self._install_one(package)
            except OperationCancelledError:
                raise
            except PSResourceError as e:
                logger.warning(f"Failed to install {package.identity}: {e}")
                result.failed[package.identity] = e
                continue

            result.committed.append(record)
            logger.info(f"Installed {package.identity} from {package.repository}")

        return result

    def _already_present(self, package: ResolvedPackage) -> bool:
        if self.options.reinstall or self.options.save_only:
            return False
        return self.index.is_installed(package.identity)

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelledError("Installation cancelled")

    def _install_one(self, package: ResolvedPackage) -> InstalledPackageRecord:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"psresource-{package.name.lower()}-", dir=self.temp_root))
        logger.debug(f"Staging {package.identity} in {staging}")

        try:
            nupkg = self._download(package, staging)

            if self.options.save_only and self.options.as_nupkg:
                return self._save_nupkg(package, nupkg)

            content_dir = staging / package.name.lower() / str(package.version)
            try:
                extract_nupkg(nupkg, content_dir)
                nupkg.unlink()
            except OSError as e:
                raise DownloadError(package.name, f"Failed to unpack {package.identity}: {e}") from e

            script_file = _find_file(content_dir, f"{package.name}{SCRIPT_EXT}")
            resource_type = ResourceType.SCRIPT if script_file is not None else ResourceType.MODULE

            if not self.options.save_only:
                self._check_license(package, content_dir)
            if self.options.no_clobber:
                self._check_clobber(package)

            remove_packaging_residue(content_dir, package.identity)

            if resource_type == ResourceType.SCRIPT:
                return self._commit_script(package, content_dir, script_file)
            return self._commit_module(package, content_dir)
        finally:
            self._remove_staging(staging)

    def _download(self, package: ResolvedPackage, staging: Path) -> Path:
        self._check_cancelled()
        try:
            return package.source.download(package.identity, staging)
        except PSResourceError as e:
            raise DownloadError(package.name, f"Failed to download {package.identity}: {e}") from e
        except OSError as e:
            raise DownloadError(package.name, f"Failed to write {package.identity} to staging: {e}") from e

    # ----- validation -----

    def _requires_license(self, package: ResolvedPackage, content_dir: Path) -> bool:
        if package.metadata.require_license_acceptance:
            return True
        manifest = _find_file(content_dir, f"{package.name}{MANIFEST_EXT}")
        if manifest is None:
            return False
        return bool(_LICENSE_REQUIRED_RE.search(manifest.read_text(encoding="utf-8", errors="replace")))

    def _check_license(self, package: ResolvedPackage, content_dir: Path) -> None:
        if not self._requires_license(package, content_dir) or self.options.license_pre_accepted:
            return

        license_file = _find_file(content_dir, LICENSE_FILE)
        if license_file is None:
            raise LicenseNotFoundError(
                package.name,
                f"{package.name} package could not be installed: {LICENSE_FILE} not found. "
                f"{LICENSE_FILE} must be provided when user license acceptance is required.",
            )

        license_text = license_file.read_text(encoding="utf-8", errors="replace")
        message = f"{license_text}\n\nDo you accept the license terms for module '{package.name}'?"
        accepted = self.prompt("License Acceptance", message) if self.prompt is not None else False
        if not accepted:
            raise LicenseDeclinedError(
                package.name,
                f"{package.name} package could not be installed: license acceptance is required. "
                f"Accept the license or use the accept-license option.",
            )

    def _check_clobber(self, package: ResolvedPackage) -> None:
        exported = CapabilityIndex.from_tags(package.metadata.tags).exported_names()
        if not exported:
            return

        owners = self.index.capability_owners()
        colliding_commands = []
        colliding_owners: set[str] = set()
        for command in sorted(exported):
            others = {o for o in owners.get(command, set()) if o.lower() != package.name.lower()}
            if others:
                colliding_commands.append(command)
                colliding_owners |= others

        if colliding_commands:
            raise ClobberError(package.name, colliding_commands, sorted(colliding_owners, key=str.lower))

    # ----- commit -----

    def _record(self, package: ResolvedPackage, resource_type: ResourceType, location: Path) -> InstalledPackageRecord:
        return InstalledPackageRecord.from_resolved(package, resource_type, location, datetime.now(UTC))

    def _writes_metadata(self) -> bool:
        return not self.options.save_only or self.options.include_xml

    def _module_destination(self, package: ResolvedPackage) -> Path:
        if self.options.save_only:
            return self.save_path / package.name / str(package.version)
        return self.layout.module_version_dir(package.name, package.version)

    def _commit_module(self, package: ResolvedPackage, content_dir: Path) -> InstalledPackageRecord:
        destination = self._module_destination(package)
        record = self._record(package, ResourceType.MODULE, destination)
        if self._writes_metadata():
            write_record(content_dir / MODULE_INFO_FILE, record)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if destination.exists():
                logger.debug(f"Replacing existing '{destination}'")
                shutil.rmtree(destination)
            shutil.move(str(content_dir), str(destination))
        except OSError as e:
            raise CommitError(package.name, f"Failed to move {package.identity} into {destination}: {e}") from e

        logger.debug(f"Committed {package.identity} to {destination}")
        return record

    def _commit_script(self, package: ResolvedPackage, content_dir: Path, script_file: Path) -> InstalledPackageRecord:
        if self.options.save_only:
            script_dest = self.save_path / f"{package.name}{SCRIPT_EXT}"
            info_dest = self.save_path / SCRIPT_INFOS_DIR / f"{package.name}{SCRIPT_INFO_SUFFIX}"
        else:
            script_dest = self.layout.script_path(package.name)
            info_dest = self.layout.script_info_path(package.name)

        record = self._record(package, ResourceType.SCRIPT, script_dest)
        staged_info = content_dir / f"{package.name}{SCRIPT_INFO_SUFFIX}"
        if self._writes_metadata():
            write_record(staged_info, record)

        try:
            script_dest.parent.mkdir(parents=True, exist_ok=True)
            # The sidecar marks the script installed; it is moved last
            if self._writes_metadata():
                info_dest.unlink(missing_ok=True)
            script_dest.unlink(missing_ok=True)
            shutil.move(str(script_file), str(script_dest))
            if self._writes_metadata():
                info_dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(staged_info), str(info_dest))
        except OSError as e:
            raise CommitError(package.name, f"Failed to move {package.identity} into {script_dest}: {e}") from e

        logger.debug(f"Committed {package.identity} to {script_dest}")
        return record

    def _save_nupkg(self, package: ResolvedPackage, nupkg: Path) -> InstalledPackageRecord:
        destination = self.save_path / nupkg.name
        try:
            self.save_path.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(nupkg, destination)
        except OSError as e:
            raise CommitError(package.name, f"Failed to save {nupkg.name} to {self.save_path}: {e}") from e
        return self._record(package, ResourceType.MODULE, destination)

    def _remove_staging(self, staging: Path) -> None:
        try:
            shutil.rmtree(staging)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove staging directory {staging}: {e}")


__all__ = [
    "InstallError",
    "InstallTransaction",
    "Prompt",
    "TransactionResult",
    "extract_nupkg",
    "remove_packaging_residue",
]

"""On-disk layout of an install root and the sidecar metadata files in it.

    <root>/Modules/<Id>/<Version>/...                       module content
    <root>/Modules/<Id>/<Version>/PSGetModuleInfo.yaml      module sidecar
    <root>/Scripts/<Id>.ps1                                 script content
    <root>/Scripts/InstalledScriptInfos/<Id>_InstalledScriptInfo.yaml
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..models import InstalledPackageRecord
from ..versioning import NuGetVersion

logger = logging.getLogger(__name__)

MODULE_INFO_FILE = "PSGetModuleInfo.yaml"
SCRIPT_INFO_SUFFIX = "_InstalledScriptInfo.yaml"
SCRIPT_INFOS_DIR = "InstalledScriptInfos"
MANIFEST_EXT = ".psd1"
SCRIPT_EXT = ".ps1"


@dataclass(frozen=True)
class InstallLayout:
    """Paths under one install root."""

    root: Path

    @property
    def modules_dir(self) -> Path:
        return self.root / "Modules"

    @property
    def scripts_dir(self) -> Path:
        return self.root / "Scripts"

    @property
    def script_infos_dir(self) -> Path:
        return self.scripts_dir / SCRIPT_INFOS_DIR

    def module_dir(self, package_id: str) -> Path:
        return self.modules_dir / package_id

    def module_version_dir(self, package_id: str, version: NuGetVersion | str) -> Path:
        return self.modules_dir / package_id / str(version)

    def module_info_path(self, package_id: str, version: NuGetVersion | str) -> Path:
        return self.module_version_dir(package_id, version) / MODULE_INFO_FILE

    def script_path(self, package_id: str) -> Path:
        return self.scripts_dir / f"{package_id}{SCRIPT_EXT}"

    def script_info_path(self, package_id: str) -> Path:
        return self.script_infos_dir / f"{package_id}{SCRIPT_INFO_SUFFIX}"


def write_record(path: Path, record: InstalledPackageRecord) -> None:
    """Serialize a sidecar record as YAML."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(record.model_dump(mode="json"), f, sort_keys=False)


def read_record(path: Path) -> InstalledPackageRecord | None:
    """Load a sidecar record; unreadable files are logged and skipped."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        record = InstalledPackageRecord(**data)
    except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
        logger.warning(f"Skipping unreadable package metadata {path}: {e}")
        return None

    if NuGetVersion.try_parse(record.version) is None:
        logger.warning(f"Skipping package metadata {path}: invalid version '{record.version}'")
        return None
    return record

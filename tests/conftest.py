"""Pytest configuration and shared fixtures for psresource-cli tests."""

import logging
import sys
import zipfile
from pathlib import Path

import pytest

# Allow running the tests from a checkout without installing the package
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from psresource_cli.logging_setup import JsonlHandler  # noqa: E402
from rich.logging import RichHandler  # noqa: E402

NUSPEC_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://schemas.microsoft.com/packaging/2011/08/nuspec.xsd">
  <metadata>
    <id>{id}</id>
    <version>{version}</version>
    <authors>Test Author</authors>
    <description>{description}</description>
    <requireLicenseAcceptance>{require_license}</requireLicenseAcceptance>
    <tags>{tags}</tags>
    <dependencies>{dependencies}</dependencies>
  </metadata>
</package>
"""


def build_nuspec(
    package_id: str,
    version: str,
    dependencies: list[tuple[str, str | None]] | None = None,
    tags: list[str] | None = None,
    require_license: bool = False,
    description: str = "",
) -> str:
    deps = []
    for dep_id, dep_range in dependencies or []:
        if dep_range is None:
            deps.append(f'<dependency id="{dep_id}" />')
        else:
            deps.append(f'<dependency id="{dep_id}" version="{dep_range}" />')
    return NUSPEC_TEMPLATE.format(
        id=package_id,
        version=version,
        description=description or f"{package_id} test package",
        require_license="true" if require_license else "false",
        tags=" ".join(tags or []),
        dependencies="".join(deps),
    )


def make_nupkg(
    directory: Path,
    package_id: str,
    version: str,
    dependencies: list[tuple[str, str | None]] | None = None,
    tags: list[str] | None = None,
    files: dict[str, str] | None = None,
    require_license: bool = False,
    description: str = "",
) -> Path:
    """Write ``<id>.<version>.nupkg`` into ``directory`` with NuGet packaging residue.

    ``files`` defaults to a module manifest plus script module.
    """
    directory.mkdir(parents=True, exist_ok=True)
    if files is None:
        files = {
            f"{package_id}.psd1": f"@{{ ModuleVersion = '{version}' }}\n",
            f"{package_id}.psm1": "function Invoke-Test { }\n",
        }

    path = directory / f"{package_id}.{version}.nupkg"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr(
            f"{package_id}.nuspec",
            build_nuspec(package_id, version, dependencies, tags, require_license, description),
        )
        archive.writestr("[Content_Types].xml", "<Types />")
        archive.writestr("_rels/.rels", "<Relationships />")
        archive.writestr("package/services/metadata/core-properties/abc.psmdcp", "<coreProperties />")
        for name, content in files.items():
            archive.writestr(name, content)
    return path


@pytest.fixture
def nupkg_factory():
    """Return the package archive builder."""
    return make_nupkg


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point every user-level path at a temp directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("PSRESOURCE_HOME", str(home / ".psresource"))
    monkeypatch.setenv("PSRESOURCE_LOG_PATH", str(tmp_path / "logs" / "psresource.log.jsonl"))
    monkeypatch.delenv("PSRESOURCE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("PSRESOURCE_PASSWORD", raising=False)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    root = logging.getLogger()
    level = root.level
    yield home

    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler, (JsonlHandler, RichHandler)):
            root.removeHandler(handler)

"""CLI path policy and dependency injection helpers.

This module centralizes path-related policy decisions for the CLI. The
registry, resolver and installer receive paths via injection; this module
provides the CLI's choices.
"""

from __future__ import annotations

from pathlib import Path

from .install import InstalledPackageIndex
from .install import InstallLayout
from .models import InstallScope
from .repositories import RepositoryRegistry
from .settings import AppSettings
from .settings import get_config_home
from .settings import get_settings

REPOSITORY_STORE_FILE = "repositories.yaml"
LOG_FILE = "psresource.log.jsonl"


def default_install_root(scope: InstallScope) -> Path:
    """Built-in install root for a scope, used when settings do not override it."""
    if scope == InstallScope.ALL_USERS:
        return Path("/usr/local/share/psresource")
    return Path.home() / ".local" / "share" / "psresource"


def get_install_root(scope: InstallScope, settings: AppSettings | None = None) -> Path:
    settings = settings or get_settings()
    return settings.get_install_path(scope) or default_install_root(scope)


def get_repository_store_path(settings: AppSettings | None = None) -> Path:
    settings = settings or get_settings()
    return settings.get_repository_store() or get_config_home() / REPOSITORY_STORE_FILE


def get_log_path(settings: AppSettings | None = None) -> Path:
    settings = settings or get_settings()
    configured = settings.get_log_settings().get("path")
    return Path(configured).expanduser() if configured else get_config_home() / LOG_FILE


def get_temp_root(settings: AppSettings | None = None) -> Path | None:
    """Parent directory for staging; None means the system temp directory."""
    settings = settings or get_settings()
    return settings.get_temp_path()


# ===== FACTORIES =====


def create_registry(settings: AppSettings | None = None) -> RepositoryRegistry:
    return RepositoryRegistry(get_repository_store_path(settings))


def create_layout(scope: InstallScope, settings: AppSettings | None = None) -> InstallLayout:
    return InstallLayout(get_install_root(scope, settings))


def create_installed_index(
    scopes: list[InstallScope] | None = None, settings: AppSettings | None = None
) -> InstalledPackageIndex:
    """Index over the given scopes' install roots (all scopes by default)."""
    settings = settings or get_settings()
    scopes = scopes or list(InstallScope)
    return InstalledPackageIndex([create_layout(scope, settings) for scope in scopes])

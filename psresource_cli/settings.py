"""Settings management for psresource-cli.

Simple, scope-aware YAML settings. A project file overrides the user file:

1. project (.psresource/settings.yaml) - committed, team-shared
2. global (~/.psresource/settings.yaml) - user defaults

Recognised keys::

    install_path:
      CurrentUser: ~/pkgs
      AllUsers: /opt/psresource
    repository_store: ~/.psresource/repositories.yaml
    temp_path: /var/tmp/psresource
    log:
      path: ~/.psresource/psresource.log.jsonl
      level: DEBUG
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from typing import Literal

import yaml

from .models import InstallScope

logger = logging.getLogger(__name__)

Scope = Literal["project", "global"]

HOME_ENV = "PSRESOURCE_HOME"


def get_config_home() -> Path:
    """User configuration directory, ``$PSRESOURCE_HOME`` or ``~/.psresource``."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".psresource"


@dataclass
class SettingsPaths:
    """Standard paths for settings files."""

    global_settings: Path
    project_settings: Path

    @classmethod
    def default(cls) -> SettingsPaths:
        return cls(
            global_settings=get_config_home() / "settings.yaml",
            project_settings=Path.cwd() / ".psresource" / "settings.yaml",
        )


class AppSettings:
    """Settings manager with scope-aware merging.

    Usage:
        settings = AppSettings()
        root = settings.get_install_path(InstallScope.CURRENT_USER)  # Path or None
        settings.set_install_path(InstallScope.CURRENT_USER, Path("~/pkgs"))
    """

    def __init__(self, paths: SettingsPaths | None = None) -> None:
        self.paths = paths or SettingsPaths.default()

    def get_merged_settings(self) -> dict[str, Any]:
        """Load and merge settings from all scopes; project wins."""
        result: dict[str, Any] = {}
        for path in [self.paths.global_settings, self.paths.project_settings]:
            content = self._load(path)
            if content:
                result = self._deep_merge(result, content)
        return result

    # ----- Install paths -----

    def get_install_path(self, scope: InstallScope) -> Path | None:
        """Configured install root for a scope, or None for the built-in default."""
        install_paths = self.get_merged_settings().get("install_path") or {}
        value = install_paths.get(scope.value)
        return Path(value).expanduser() if value else None

    def set_install_path(self, scope: InstallScope, path: Path, settings_scope: Scope = "global") -> None:
        install_paths = dict(self._read_scope(settings_scope).get("install_path") or {})
        install_paths[scope.value] = str(path)
        self._update_setting("install_path", install_paths, settings_scope)

    # ----- Repository store -----

    def get_repository_store(self) -> Path | None:
        value = self.get_merged_settings().get("repository_store")
        return Path(value).expanduser() if value else None

    def get_temp_path(self) -> Path | None:
        value = self.get_merged_settings().get("temp_path")
        return Path(value).expanduser() if value else None

    # ----- Logging -----

    def get_log_settings(self) -> dict[str, Any]:
        """The ``log`` section (``path``, ``level``); empty when unset."""
        return self.get_merged_settings().get("log") or {}

    # ----- Scope utilities -----

    def _get_scope_path(self, scope: Scope) -> Path:
        return {
            "project": self.paths.project_settings,
            "global": self.paths.global_settings,
        }[scope]

    def _load(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Ignoring unreadable settings file {path}: {e}")
            return {}
        if not isinstance(content, dict):
            logger.warning(f"Ignoring settings file {path}: expected a mapping")
            return {}
        return content

    def _read_scope(self, scope: Scope) -> dict[str, Any]:
        return self._load(self._get_scope_path(scope))

    def _write_scope(self, scope: Scope, settings: dict[str, Any]) -> None:
        path = self._get_scope_path(scope)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(settings, f, default_flow_style=False)

    def _update_setting(self, key: str, value: Any, scope: Scope) -> None:
        settings = self._read_scope(scope)
        settings[key] = value
        self._write_scope(scope, settings)

    def _deep_merge(self, base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dicts, overlay wins."""
        result = base.copy()
        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


def get_settings() -> AppSettings:
    """Get a settings instance with default paths."""
    return AppSettings()

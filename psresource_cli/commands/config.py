"""Configuration commands."""

from __future__ import annotations

from pathlib import Path

import click

from ..console import console
from ..models import InstallScope
from ..paths import get_install_root
from ..settings import get_settings
from ..utils import escape_markup

_SCOPE = click.Choice([s.value for s in InstallScope], case_sensitive=False)


@click.command("set-install-path")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.option("--scope", type=_SCOPE, default=InstallScope.CURRENT_USER.value, show_default=True)
@click.option(
    "--project",
    "settings_scope",
    flag_value="project",
    help="Store in project settings (.psresource/settings.yaml)",
)
@click.option(
    "--global",
    "settings_scope",
    flag_value="global",
    default=True,
    help="Store in user settings (~/.psresource/settings.yaml)",
)
def set_install_path_cmd(path: Path, scope: str, settings_scope: str):
    """Change the install root used for a scope.

    Examples:

        \b
        psresource set-install-path ~/pwsh --scope CurrentUser
        psresource set-install-path ./vendor --project
    """
    install_scope = next(s for s in InstallScope if s.value.lower() == scope.lower())
    settings = get_settings()
    settings.set_install_path(install_scope, path.expanduser().absolute(), settings_scope)

    scope_labels = {
        "project": "project (.psresource/settings.yaml)",
        "global": "global (~/.psresource/settings.yaml)",
    }
    effective = get_install_root(install_scope, settings)
    console.print(f"[green]✓ {install_scope.value} packages now install to {escape_markup(effective)}[/green]")
    console.print(f"  Settings: {scope_labels[settings_scope]}")

"""Package commands: install, save, update, uninstall, list and find.

Each command builds an InstallOrchestrator (or an installed-package index)
from the configured paths and renders its report.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from collections.abc import Callable
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
from rich.table import Table

from ..console import confirm_prompt
from ..console import console
from ..errors import PSResourceError
from ..install import InstalledPackageIndex
from ..models import Credential
from ..models import InstallOptions
from ..models import InstallScope
from ..orchestrator import InstallOrchestrator
from ..orchestrator import InstallReport
from ..paths import create_installed_index
from ..paths import create_layout
from ..paths import create_registry
from ..paths import get_temp_root
from ..utils import escape_markup
from ..utils import format_error_message
from ..versioning import parse_version_or_range

logger = logging.getLogger(__name__)

_SCOPE = click.Choice([s.value for s in InstallScope], case_sensitive=False)


def _scope(value: str) -> InstallScope:
    return next(s for s in InstallScope if s.value.lower() == value.lower())


def _common_options(func: Callable) -> Callable:
    """Options shared by install, save and update."""
    decorators = [
        click.option("--version", "version", default=None, help="Exact version, NuGet range, or * for any"),
        click.option("--prerelease", is_flag=True, help="Consider pre-release versions"),
        click.option("--repository", "-r", "repositories", multiple=True, help="Repository to use (repeatable)"),
        click.option("--trust-repository", is_flag=True, help="Do not ask before using untrusted repositories"),
        click.option("--accept-license", is_flag=True, help="Accept package licenses without asking"),
        click.option("--skip-dependency-check", is_flag=True, help="Do not install dependencies"),
        click.option("--username", default=None, help="User name for the repository"),
        click.option(
            "--password",
            default=None,
            envvar="PSRESOURCE_PASSWORD",
            help="Password for the repository (or PSRESOURCE_PASSWORD)",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def _credential(username: str | None, password: str | None) -> Credential | None:
    if not username:
        return None
    if password is None:
        password = click.prompt(f"Password for {username}", hide_input=True)
    return Credential(username=username, password=password)


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation signal checked between queries and downloads."""
    cancel = threading.Event()

    def sigint_handler(signum, frame):
        console.print("\n[yellow]Cancelling after the current step...[/yellow]")
        cancel.set()

    original_handler = signal.signal(signal.SIGINT, sigint_handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, original_handler)


def _orchestrator(cancel: threading.Event) -> InstallOrchestrator:
    return InstallOrchestrator(
        create_registry(),
        create_layout,
        prompt=confirm_prompt,
        temp_root=get_temp_root(),
        cancel=cancel,
    )


def _render_report(report: InstallReport, verb: str, action: str) -> None:
    for record in report.installed:
        console.print(
            f"[green]✓ {verb} {escape_markup(record.name)} {record.version}[/green] "
            f"[dim]from {escape_markup(record.repository)}[/dim]"
        )
    skipped = "already up to date" if action == "update" else "already installed"
    for name in report.skipped:
        console.print(f"[dim]- {escape_markup(name)} {skipped}[/dim]")
    for error in report.errors:
        console.print(f"[yellow]⚠ {escape_markup(format_error_message(error))}[/yellow]")
    if report.unsatisfied:
        console.print(f"[red]✗ Could not {action}: {escape_markup(', '.join(report.unsatisfied))}[/red]")
        sys.exit(1)


@click.command("install")
@click.argument("names", nargs=-1, required=True)
@_common_options
@click.option("--scope", type=_SCOPE, default=InstallScope.CURRENT_USER.value, show_default=True)
@click.option("--reinstall", is_flag=True, help="Install even when the version is already installed")
@click.option("--force", is_flag=True, help="Implies --trust-repository and --accept-license")
@click.option("--no-clobber", is_flag=True, help="Fail packages exporting commands another package provides")
def install_cmd(
    names: tuple[str, ...],
    version: str | None,
    prerelease: bool,
    repositories: tuple[str, ...],
    trust_repository: bool,
    accept_license: bool,
    skip_dependency_check: bool,
    username: str | None,
    password: str | None,
    scope: str,
    reinstall: bool,
    force: bool,
    no_clobber: bool,
):
    """Install packages and their dependencies.

    Examples:

        \b
        psresource install Pester --version "[5.0,6.0)"
        psresource install Az.Accounts -r PSGallery --trust-repository
    """
    options = InstallOptions(
        prerelease=prerelease,
        reinstall=reinstall,
        force=force,
        trust_repository=trust_repository,
        accept_license=accept_license,
        no_clobber=no_clobber,
        skip_dependency_check=skip_dependency_check,
        credential=_credential(username, password),
    )
    with _cancel_on_interrupt() as cancel:
        try:
            report = _orchestrator(cancel).run(
                list(names), version, list(repositories) or None, _scope(scope), options
            )
        except PSResourceError as e:
            raise click.ClickException(format_error_message(e)) from e
    _render_report(report, "Installed", "install")


@click.command("save")
@click.argument("names", nargs=-1, required=True)
@click.option(
    "--path",
    "path",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to save into",
)
@_common_options
@click.option("--as-nupkg", is_flag=True, help="Keep package archives instead of expanding them")
@click.option("--include-xml", is_flag=True, help="Write package metadata files next to saved content")
def save_cmd(
    names: tuple[str, ...],
    path: Path,
    version: str | None,
    prerelease: bool,
    repositories: tuple[str, ...],
    trust_repository: bool,
    accept_license: bool,
    skip_dependency_check: bool,
    username: str | None,
    password: str | None,
    as_nupkg: bool,
    include_xml: bool,
):
    """Save packages and their dependencies to a directory without installing them."""
    options = InstallOptions(
        prerelease=prerelease,
        trust_repository=trust_repository,
        accept_license=accept_license,
        skip_dependency_check=skip_dependency_check,
        as_nupkg=as_nupkg,
        include_xml=include_xml,
        credential=_credential(username, password),
    )
    with _cancel_on_interrupt() as cancel:
        try:
            report = _orchestrator(cancel).save(list(names), path, version, list(repositories) or None, options)
        except PSResourceError as e:
            raise click.ClickException(format_error_message(e)) from e
    _render_report(report, "Saved", "save")


@click.command("update")
@click.argument("names", nargs=-1)
@_common_options
@click.option("--scope", type=_SCOPE, default=InstallScope.CURRENT_USER.value, show_default=True)
@click.option("--force", is_flag=True, help="Implies --trust-repository and --accept-license")
def update_cmd(
    names: tuple[str, ...],
    version: str | None,
    prerelease: bool,
    repositories: tuple[str, ...],
    trust_repository: bool,
    accept_license: bool,
    skip_dependency_check: bool,
    username: str | None,
    password: str | None,
    scope: str,
    force: bool,
):
    """Update installed packages to the newest available version (all when no NAMES)."""
    options = InstallOptions(
        prerelease=prerelease,
        force=force,
        trust_repository=trust_repository,
        accept_license=accept_license,
        skip_dependency_check=skip_dependency_check,
        credential=_credential(username, password),
    )
    with _cancel_on_interrupt() as cancel:
        try:
            report = _orchestrator(cancel).update(
                list(names) or None, version, list(repositories) or None, _scope(scope), options
            )
        except PSResourceError as e:
            raise click.ClickException(format_error_message(e)) from e
    _render_report(report, "Updated", "update")


@click.command("uninstall")
@click.argument("names", nargs=-1, required=True)
@click.option("--version", "version", default=None, help="Version or range to remove (all versions when omitted)")
@click.option("--scope", type=_SCOPE, default=InstallScope.CURRENT_USER.value, show_default=True)
@click.option("--skip-dependency-check", is_flag=True, help="Remove even when other packages depend on it")
def uninstall_cmd(names: tuple[str, ...], version: str | None, scope: str, skip_dependency_check: bool):
    """Uninstall packages (wildcards allowed)."""
    try:
        version_range = parse_version_or_range(version)
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e

    index = InstalledPackageIndex([create_layout(_scope(scope))])
    failed = False
    for pattern in names:
        matched = sorted({r.name for r in index.get([pattern], version_range)}, key=str.lower)
        if not matched:
            console.print(f"[yellow]⚠ No installed package matches '{escape_markup(pattern)}'[/yellow]")
            failed = True
            continue
        for name in matched:
            try:
                removed = index.uninstall(name, version_range, skip_dependency_check)
            except PSResourceError as e:
                console.print(f"[red]✗[/red] {escape_markup(format_error_message(e))}")
                failed = True
                continue
            for record in removed:
                console.print(f"[green]✓ Uninstalled {escape_markup(record.name)} {record.version}[/green]")

    if failed:
        sys.exit(1)


@click.command("list")
@click.argument("names", nargs=-1)
@click.option("--version", "version", default=None, help="Only versions within this range")
@click.option("--scope", type=_SCOPE, default=None, help="Only this scope (both when omitted)")
def list_cmd(names: tuple[str, ...], version: str | None, scope: str | None):
    """List installed packages."""
    try:
        version_range = parse_version_or_range(version)
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e

    index = create_installed_index([_scope(scope)] if scope else None)
    records = index.get(list(names) or None, version_range)
    if not records:
        console.print("[yellow]No installed packages found[/yellow]")
        return

    table = Table(title="Installed Packages", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Version")
    table.add_column("Type")
    table.add_column("Repository")
    table.add_column("Description")
    for record in records:
        table.add_row(
            escape_markup(record.name),
            record.version,
            record.type.value,
            escape_markup(record.repository),
            escape_markup(record.description),
        )
    console.print(table)


@click.command("find")
@click.argument("names", nargs=-1)
@click.option("--version", "version", default=None, help="Version or range; * lists every version")
@click.option("--prerelease", is_flag=True, help="Include pre-release versions")
@click.option("--repository", "-r", "repositories", multiple=True, help="Repository to search (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Only packages carrying this tag (repeatable, all must match)")
@click.option(
    "--command",
    "commands",
    multiple=True,
    help="Only packages exporting this command or DSC resource (repeatable)",
)
def find_cmd(
    names: tuple[str, ...],
    version: str | None,
    prerelease: bool,
    repositories: tuple[str, ...],
    tags: tuple[str, ...],
    commands: tuple[str, ...],
):
    """Find packages in registered repositories (wildcards allowed).

    Search by name, by --tag, by --command, or any combination.
    """
    if not (names or tags or commands):
        raise click.UsageError("Give a package name, --tag or --command")

    with _cancel_on_interrupt() as cancel:
        try:
            results = _orchestrator(cancel).find(
                list(names),
                version,
                list(repositories) or None,
                prerelease,
                tags=list(tags),
                commands=list(commands),
            )
        except PSResourceError as e:
            raise click.ClickException(format_error_message(e)) from e

    if not results:
        console.print("[yellow]No matching packages found[/yellow]")
        return

    table = Table(title="Packages", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Version")
    table.add_column("Repository")
    if commands:
        table.add_column("Commands")
    table.add_column("Description")
    for result in results:
        row = [
            escape_markup(result.metadata.name),
            str(result.metadata.version),
            escape_markup(result.repository),
        ]
        if commands:
            row.append(escape_markup(", ".join(result.commands)))
        row.append(escape_markup(result.metadata.description))
        table.add_row(*row)
    console.print(table)

"""Repository registry commands.

Register, modify and remove the package sources that install, save,
update and find search, in priority order.
"""

from __future__ import annotations

import click
from rich.prompt import Confirm
from rich.table import Table

from ..console import console
from ..errors import PSResourceError
from ..models import DEFAULT_PRIORITY
from ..models import MAX_PRIORITY
from ..models import MIN_PRIORITY
from ..paths import create_registry
from ..utils import escape_markup
from ..utils import format_error_message

_PRIORITY = click.IntRange(MIN_PRIORITY, MAX_PRIORITY)


@click.group(invoke_without_command=True)
@click.pass_context
def repository(ctx: click.Context):
    """Manage registered repositories.

    Examples:

        \b
        # Register a local folder of .nupkg files, searched first
        psresource repository register Local ~/packages --priority 0 --trusted

        \b
        # Trust the default gallery
        psresource repository set PSGallery --trusted
    """
    if ctx.invoked_subcommand is None:
        click.echo("\n" + ctx.get_help())
        ctx.exit()


@repository.command("register")
@click.argument("name")
@click.argument("uri")
@click.option(
    "--priority",
    type=_PRIORITY,
    default=DEFAULT_PRIORITY,
    show_default=True,
    help="Search order; lower is searched first",
)
@click.option("--trusted", is_flag=True, help="Install from this repository without confirmation")
def repository_register(name: str, uri: str, priority: int, trusted: bool):
    """Register a repository.

    URI is an http(s) NuGet v2 feed URL or a local directory.
    """
    try:
        entry = create_registry().add(name, uri, priority, trusted)
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e
    console.print(f"[green]✓ Registered {escape_markup(entry.name)}[/green]")
    console.print(f"  Url: {escape_markup(entry.url)}")
    console.print(f"  Priority: {entry.priority}")


@repository.command("set")
@click.argument("name")
@click.option("--uri", default=None, help="New feed URL or directory")
@click.option("--priority", type=_PRIORITY, default=None, help="New search priority")
@click.option("--trusted/--untrusted", default=None, help="Change whether the repository is trusted")
def repository_set(name: str, uri: str | None, priority: int | None, trusted: bool | None):
    """Change settings of a registered repository; omitted options are left as they are."""
    try:
        entry = create_registry().update(name, url=uri, priority=priority, trusted=trusted)
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e
    console.print(f"[green]✓ Updated {escape_markup(entry.name)}[/green]")


@repository.command("unregister")
@click.argument("names", nargs=-1, required=True)
def repository_unregister(names: tuple[str, ...]):
    """Remove one or more repositories."""
    try:
        removed = create_registry().remove(list(names))
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e
    for entry in removed:
        console.print(f"[green]✓ Unregistered {escape_markup(entry.name)}[/green]")


@repository.command("list")
@click.argument("names", nargs=-1)
def repository_list(names: tuple[str, ...]):
    """List registered repositories in search order (wildcards allowed)."""
    try:
        entries = create_registry().list(list(names) or None)
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e

    if not entries:
        console.print("[yellow]No matching repositories[/yellow]")
        return

    table = Table(title="Repositories", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Url")
    table.add_column("Trusted")
    table.add_column("Priority", justify="right")
    for entry in entries:
        table.add_row(
            escape_markup(entry.name),
            escape_markup(entry.url),
            "yes" if entry.trusted else "no",
            str(entry.priority),
        )
    console.print(table)


@repository.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def repository_reset(yes: bool):
    """Replace every registration with the default PSGallery repository."""
    if not yes and not Confirm.ask("Remove all registered repositories and restore the default?", default=False):
        console.print("[dim]Reset cancelled[/dim]")
        return
    try:
        entry = create_registry().reset()
    except PSResourceError as e:
        raise click.ClickException(format_error_message(e)) from e
    console.print(f"[green]✓ Repository store reset to {escape_markup(entry.name)}[/green]")

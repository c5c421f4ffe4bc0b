"""psresource - install and manage PowerShell-style modules and scripts from NuGet feeds."""

import logging
import os

import click

from .commands.config import set_install_path_cmd
from .commands.repository import repository as repository_group
from .commands.resource import find_cmd
from .commands.resource import install_cmd
from .commands.resource import list_cmd
from .commands.resource import save_cmd
from .commands.resource import uninstall_cmd
from .commands.resource import update_cmd
from .console import console
from .logging_setup import init_console_logging
from .logging_setup import init_json_logging
from .paths import get_log_path
from .settings import get_settings

logger = logging.getLogger(__name__)


def _init_logging(verbose: bool) -> None:
    """JSONL sink first; environment variables win over settings."""
    settings = get_settings()
    log_settings = settings.get_log_settings()
    init_json_logging(
        os.environ.get("PSRESOURCE_LOG_PATH") or get_log_path(settings),
        os.environ.get("PSRESOURCE_LOG_LEVEL") or log_settings.get("level"),
    )
    if verbose:
        init_console_logging(console)


@click.group(invoke_without_command=True)
@click.version_option(package_name="psresource-cli")
@click.option("--verbose", "-v", is_flag=True, help="Echo debug logging to the terminal")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """psresource - find, install and manage packages from registered repositories."""
    _init_logging(verbose)
    logger.debug(f"Invoked {ctx.invoked_subcommand or 'help'}")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()


cli.add_command(repository_group)
cli.add_command(install_cmd)
cli.add_command(save_cmd)
cli.add_command(update_cmd)
cli.add_command(uninstall_cmd)
cli.add_command(list_cmd)
cli.add_command(find_cmd)
cli.add_command(set_install_path_cmd)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

"""Shared Rich console instance and interactive prompts for CLI output."""

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

console = Console()


def confirm_prompt(title: str, message: str) -> bool:
    """Show ``message`` in a panel and ask for a yes/no answer (default no).

    Used for untrusted-repository and license-acceptance questions.
    """
    console.print(Panel(message, title=title, title_align="left", border_style="yellow"))
    return Confirm.ask("Continue?", default=False, console=console)


__all__ = ["console", "confirm_prompt"]

"""CLI command groups for psresource-cli."""

__all__ = [
    "config",
    "repository",
    "resource",
]

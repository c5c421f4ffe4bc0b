"""Dependency resolution against a single source."""

from .resolver import DependencyResolver
from .resolver import InstalledQuery
from .resolver import ResolutionResult

__all__ = ["DependencyResolver", "InstalledQuery", "ResolutionResult"]

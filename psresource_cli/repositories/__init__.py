"""Repository registry - persisted package sources."""

from .registry import DEFAULT_REPOSITORY
from .registry import RepositoryRegistry

__all__ = ["DEFAULT_REPOSITORY", "RepositoryRegistry"]

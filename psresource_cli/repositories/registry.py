"""Repository registry - the persisted, priority-ordered list of package sources.

The whole store is the unit of consistency: every call re-reads and fully
parses the YAML file, and every mutation rewrites it in full. There is no
locking, so two processes mutating the store concurrently can lose an
update.
"""

from __future__ import annotations

import contextlib
import fnmatch
import logging
import tempfile
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import DuplicateRepositoryError
from ..errors import InvalidArgumentError
from ..errors import RepositoryNotFoundError
from ..errors import RepositoryStoreError
from ..models import DEFAULT_PRIORITY
from ..models import MAX_PRIORITY
from ..models import MIN_PRIORITY
from ..models import RepositoryEntry

logger = logging.getLogger(__name__)

DEFAULT_REPOSITORY = RepositoryEntry(
    name="PSGallery",
    url="https://www.powershellgallery.com/api/v2",
    priority=DEFAULT_PRIORITY,
    trusted=False,
)

WILDCARD_CHARS = "*?["


def _has_wildcard(value: str) -> bool:
    return any(c in value for c in WILDCARD_CHARS)


def _validate_priority(priority: int) -> None:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise InvalidArgumentError(f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}")


def _sorted(entries: list[RepositoryEntry]) -> list[RepositoryEntry]:
    return sorted(entries, key=RepositoryEntry.sort_key)


class RepositoryRegistry:
    """Named package sources persisted to a YAML store.

    Contract:
    - Names are unique case-insensitively
    - Listings are ordered by priority, then name (case-insensitive)
    - A missing store is created holding the default PSGallery entry
    """

    def __init__(self, store_path: Path):
        self.store_path = store_path

    # ----- persistence -----

    def _read(self) -> list[RepositoryEntry]:
        if not self.store_path.exists():
            logger.info(f"Creating repository store at {self.store_path}")
            self._write([DEFAULT_REPOSITORY])
            return [DEFAULT_REPOSITORY.model_copy()]

        try:
            data = yaml.safe_load(self.store_path.read_text(encoding="utf-8")) or {}
        except (yaml.YAMLError, OSError) as e:
            raise RepositoryStoreError(f"Could not read repository store {self.store_path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("repositories", []), list):
            raise RepositoryStoreError(f"Repository store {self.store_path} is malformed")

        try:
            return [RepositoryEntry(**item) for item in data.get("repositories") or []]
        except (ValidationError, TypeError) as e:
            raise RepositoryStoreError(f"Repository store {self.store_path} has an invalid entry: {e}") from e

    def _write(self, entries: list[RepositoryEntry]) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"repositories": [entry.model_dump() for entry in _sorted(entries)]}

        with tempfile.NamedTemporaryFile(
            mode="w", dir=self.store_path.parent, prefix="repositories_", suffix=".tmp", delete=False, encoding="utf-8"
        ) as tmp_file:
            temp_path = Path(tmp_file.name)
            try:
                yaml.safe_dump(payload, tmp_file, sort_keys=False)
                tmp_file.flush()
            except Exception as e:
                with contextlib.suppress(Exception):
                    temp_path.unlink()
                raise RepositoryStoreError(f"Failed to write repository store: {e}") from e

        temp_path.replace(self.store_path)

    @staticmethod
    def _find(entries: list[RepositoryEntry], name: str) -> RepositoryEntry | None:
        key = name.strip().lower()
        for entry in entries:
            if entry.name.lower() == key:
                return entry
        return None

    # ----- operations -----

    def add(
        self,
        name: str,
        url: str,
        priority: int = DEFAULT_PRIORITY,
        trusted: bool = False,
    ) -> RepositoryEntry:
        """Register a new repository.

        Raises:
            InvalidArgumentError: Empty name or url, wildcard in name, bad priority
            DuplicateRepositoryError: A repository with this name exists
        """
        name = (name or "").strip()
        url = (url or "").strip()
        if not name:
            raise InvalidArgumentError("Repository name cannot be empty")
        if _has_wildcard(name):
            raise InvalidArgumentError(f"Repository name '{name}' cannot contain wildcards")
        if not url:
            raise InvalidArgumentError("Repository url cannot be empty")
        _validate_priority(priority)

        entries = self._read()
        if self._find(entries, name) is not None:
            raise DuplicateRepositoryError(f"Repository '{name}' is already registered")

        entry = RepositoryEntry(name=name, url=url, priority=priority, trusted=trusted)
        entries.append(entry)
        self._write(entries)
        logger.info(f"Registered repository {entry.name} ({entry.url})")
        return entry

    def update(
        self,
        name: str,
        url: str | None = None,
        priority: int | None = None,
        trusted: bool | None = None,
    ) -> RepositoryEntry:
        """Change fields of a registered repository; None leaves a field unchanged.

        Raises:
            RepositoryNotFoundError: No repository with this name
            InvalidArgumentError: Empty url or bad priority
        """
        entries = self._read()
        entry = self._find(entries, name)
        if entry is None:
            raise RepositoryNotFoundError(f"Repository '{name}' is not registered")

        if url is not None:
            if not url.strip():
                raise InvalidArgumentError("Repository url cannot be empty")
            entry.url = url.strip()
        if priority is not None:
            _validate_priority(priority)
            entry.priority = priority
        if trusted is not None:
            entry.trusted = trusted

        self._write(entries)
        logger.info(f"Updated repository {entry.name}")
        return entry

    def remove(self, names: list[str]) -> list[RepositoryEntry]:
        """Unregister repositories.

        Processing stops at the first name that is not registered; in that
        case the store is left untouched.

        Raises:
            RepositoryNotFoundError: A name is not registered
        """
        entries = self._read()
        removed = []
        for name in names:
            entry = self._find(entries, name)
            if entry is None:
                raise RepositoryNotFoundError(f"Unable to unregister '{name}': repository is not registered")
            entries.remove(entry)
            removed.append(entry)

        self._write(entries)
        for entry in removed:
            logger.info(f"Unregistered repository {entry.name}")
        return removed

    def list(self, names: list[str] | None = None) -> list[RepositoryEntry]:
        """List repositories, optionally filtered by name or wildcard pattern.

        Names that match nothing are silently omitted.
        """
        entries = self._read()
        patterns = [n for n in (names or []) if n and n.strip()]
        if not patterns or "*" in patterns:
            return _sorted(entries)

        selected: dict[str, RepositoryEntry] = {}
        for pattern in patterns:
            matched = [e for e in entries if fnmatch.fnmatchcase(e.name.lower(), pattern.lower())]
            if not matched:
                logger.debug(f"No repository matches '{pattern}'")
            for entry in matched:
                selected[entry.name.lower()] = entry
        return _sorted(list(selected.values()))

    def get(self, name: str) -> RepositoryEntry:
        """Return one repository by exact name.

        Raises:
            RepositoryNotFoundError: No repository with this name
        """
        entry = self._find(self._read(), name)
        if entry is None:
            raise RepositoryNotFoundError(f"Repository '{name}' is not registered")
        return entry

    def reset(self) -> RepositoryEntry:
        """Replace the store with only the default PSGallery entry."""
        self._write([DEFAULT_REPOSITORY])
        logger.info(f"Reset repository store {self.store_path}")
        return DEFAULT_REPOSITORY.model_copy()

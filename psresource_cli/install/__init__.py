"""Install tree - layout, installed-package queries and the install transaction.

Public API:
- InstallLayout: Where modules, scripts and sidecars live under one root
- InstalledPackageIndex: Query and uninstall what is already installed
- InstallTransaction: Stage, validate and commit a resolved package set
- TransactionResult: Per-package outcome of a transaction
"""

from .installed import InstalledPackageIndex
from .layout import InstallLayout
from .transaction import InstallTransaction
from .transaction import TransactionResult

__all__ = [
    "InstallLayout",
    "InstalledPackageIndex",
    "InstallTransaction",
    "TransactionResult",
]

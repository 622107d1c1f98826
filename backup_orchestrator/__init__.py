"""
Backup Orchestrator - host-local backup runs under a maintenance-mode toggle.

This package dumps databases and mailbox indexes, synchronizes directory trees,
and writes compressed, checksummed artifacts into a depot directory.
"""

__version__ = "1.0.0"

from .core.manager import BackupManager
from .core.postprocess import DumpPostProcessor, verify_ledger
from .core.services import MaintenanceModeController, ServiceController

__all__ = ["BackupManager", "DumpPostProcessor", "MaintenanceModeController",
           "ServiceController", "verify_ledger"]

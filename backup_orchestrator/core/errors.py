"""Exceptions and process exit codes for backup runs."""

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit codes returned by the command-line interface."""
    OK = 0
    FILESYSTEM_ERROR = 1
    BACKUP_FAILED = 2
    INVALID_CONFIG = 6


class BackupError(Exception):
    """Base class for backup orchestration errors."""
    pass


class RunAbortedError(BackupError):
    """Raised when a run aborts before any item has been executed."""

    def __init__(self, message: str, key: str, exit_code: ExitCode = ExitCode.BACKUP_FAILED):
        super().__init__(message)
        self.key = key
        self.exit_code = exit_code


class CommandError(BackupError):
    """Raised when an external tool can not be started or does not finish in time."""

    def __init__(self, message: str, command: Optional[list] = None):
        super().__init__(message)
        self.command = command or []


class ServiceCheckError(BackupError):
    """Raised when the activity state of a unit can not be determined."""
    pass

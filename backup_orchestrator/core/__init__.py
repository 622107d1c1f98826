"""Core orchestration functionality."""

from .errors import BackupError, CommandError, ExitCode, RunAbortedError, ServiceCheckError
from .messages import MESSAGES, BoundLog, Message, RunLog, Severity
from .models import (
    BackupConfig,
    BackupItemSpec,
    DumpArtifact,
    ItemResult,
    ItemState,
    ItemStatistics,
    ItemType,
    MaintenanceSettings,
    MaintenanceState,
    RunStatistics,
    ServiceHandle,
    UnitKind,
    WaitResult,
)

__all__ = [
    "BackupError", "CommandError", "ExitCode", "RunAbortedError", "ServiceCheckError",
    "MESSAGES", "BoundLog", "Message", "RunLog", "Severity",
    "BackupConfig", "BackupItemSpec", "DumpArtifact", "ItemResult", "ItemState",
    "ItemStatistics", "ItemType", "MaintenanceSettings", "MaintenanceState",
    "RunStatistics", "ServiceHandle", "UnitKind", "WaitResult",
]

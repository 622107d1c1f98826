"""Data models for backup runs."""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple


class ItemType(str, Enum):
    """Known backup item type tags."""
    DATABASE = 'database'
    MAILBOX = 'mailbox'
    SYNC = 'sync'


class ItemState(Enum):
    """Life-cycle of a backup item within one run."""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


class MaintenanceState(Enum):
    """State of the maintenance-mode toggle as seen by this run."""
    DISABLED = 'disabled'
    ENABLING = 'enabling'
    ENABLED = 'enabled'
    DISABLING = 'disabling'


class UnitKind(str, Enum):
    """Kind of systemd unit."""
    SERVICE = 'service'
    TIMER = 'timer'


class WaitResult(Enum):
    """Outcome of waiting for a unit to become inactive."""
    STOPPED = 'stopped'
    TIMED_OUT = 'timed_out'
    CHECK_FAILED = 'check_failed'


@dataclass(frozen=True)
class BackupItemSpec:
    """Immutable configuration of one backup item."""
    name: str
    type: str
    options: Mapping[str, Any] = field(default_factory=dict)
    enabled: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'options', MappingProxyType(dict(self.options)))

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass(frozen=True)
class MaintenanceSettings:
    """Maintenance-mode unit configuration."""
    unit: str
    stop_timeout: float = 30
    poll_interval: float = 1
    abort_on_failure: bool = False


@dataclass(frozen=True)
class BackupConfig:
    """Validated configuration of a whole run."""
    depot: str
    items: Tuple[BackupItemSpec, ...]
    owner: Optional[str] = None
    compression: str = 'xz'
    ledger_name: str = 'sha256sums.txt'
    maintenance: Optional[MaintenanceSettings] = None


@dataclass
class ServiceHandle:
    """A systemd unit touched during a single start/stop/wait cycle."""
    name: str
    kind: UnitKind = UnitKind.SERVICE
    active: Optional[bool] = None
    last_wait: Optional[WaitResult] = None

    @property
    def unit(self) -> str:
        return f"{self.name}.{self.kind.value}"

    @classmethod
    def parse(cls, unit: str) -> 'ServiceHandle':
        """Build a handle from a unit name like ``gitea`` or ``wp-cron.timer``."""
        for kind in UnitKind:
            suffix = f".{kind.value}"
            if unit.endswith(suffix):
                return cls(name=unit[:-len(suffix)], kind=kind)
        return cls(name=unit)


@dataclass
class DumpArtifact:
    """A dump file produced by an item and its post-processing results."""
    raw_path: str
    raw_size_bytes: int
    compressed_path: Optional[str] = None
    compressed_size_bytes: Optional[int] = None
    sha256: Optional[str] = None

    @property
    def final_path(self) -> str:
        return self.compressed_path or self.raw_path

    @property
    def final_size(self) -> int:
        if self.compressed_size_bytes is not None:
            return self.compressed_size_bytes
        return self.raw_size_bytes


@dataclass
class ItemStatistics:
    """Counters accumulated while a single item runs."""
    error_count: int = 0
    warning_count: int = 0
    file_count: int = 0
    total_bytes: int = 0
    duration_ms: int = 0


@dataclass
class ItemResult:
    """Result of running one backup item."""
    item_id: str
    statistics: ItemStatistics = field(default_factory=ItemStatistics)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    artifacts: List[DumpArtifact] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.statistics.error_count += 1

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)
        self.statistics.warning_count += 1

    def add_files(self, count: int, size: int) -> None:
        self.statistics.file_count += count
        self.statistics.total_bytes += size

    def add_artifact(self, artifact: DumpArtifact) -> None:
        self.artifacts.append(artifact)
        self.add_files(1, artifact.final_size)


@dataclass
class RunStatistics:
    """Aggregate statistics of one run. Counters only ever increase."""
    total_items: int = 0
    error_count: int = 0
    warning_count: int = 0
    file_count: int = 0
    total_bytes: int = 0
    duration_seconds: float = 0.0
    maintenance_restore_failed: bool = False
    cancelled: bool = False
    items: List[ItemResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.error_count == 0

    def add_item(self, result: ItemResult) -> None:
        """Fold an item's statistics into the aggregate."""
        self.items.append(result)
        self.total_items += 1
        self.error_count += result.statistics.error_count
        self.warning_count += result.statistics.warning_count
        self.file_count += result.statistics.file_count
        self.total_bytes += result.statistics.total_bytes

    def add_error(self, message: str) -> None:
        """Record a run-level error that does not belong to an item."""
        self.errors.append(message)
        self.error_count += 1

    def add_warning(self, message: str) -> None:
        """Record a run-level warning that does not belong to an item."""
        self.warnings.append(message)
        self.warning_count += 1

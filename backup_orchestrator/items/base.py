"""Common contract of backup items."""

import logging
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

from ..core.messages import RunLog
from ..core.models import BackupItemSpec, ItemResult, ItemState, ServiceHandle, UnitKind
from ..core.postprocess import DumpPostProcessor
from ..core.services import ServiceController
from ..utils.process import run_command

logger = logging.getLogger(__name__)

DEFAULT_TIMER_WAIT = 300
TIMER_POLL_INTERVAL = 10
DEFAULT_SERVICE_STOP_TIMEOUT = 30


@dataclass
class ItemContext:
    """Collaborators shared by all items of one run."""
    run_log: RunLog
    services: ServiceController
    postprocessor: DumpPostProcessor
    runner: Callable = run_command
    clock: Callable[[], float] = time.monotonic
    temp_dir: Optional[str] = None


class BackupItem(ABC):
    """A configured backup unit bound to one run.

    ``run()`` may be called exactly once. It moves the item from PENDING to
    RUNNING and then to SUCCEEDED or FAILED. Subclasses implement
    :meth:`backup` and report problems through ``self.log``: warnings and
    critical messages are counted in ``self.result`` automatically.
    """

    type_tag = ''

    def __init__(self, spec: BackupItemSpec, context: ItemContext):
        self.spec = spec
        self.context = context
        self.state = ItemState.PENDING
        self.result = ItemResult(item_id=self.id)
        self.log = context.run_log.bind(self.id, sink=self.result)

    @property
    def id(self) -> str:
        if self.spec.name:
            return f"{self.type_tag}({self.spec.name})"
        return self.type_tag

    @property
    def name(self) -> str:
        return self.spec.name

    def option(self, key: str, default=None):
        return self.spec.option(key, default)

    def run(self, depot_dir: str) -> ItemResult:
        """Run the backup of this item into ``depot_dir``.

        Raises:
            RuntimeError: If the item has already been run.
        """
        if self.state is not ItemState.PENDING:
            raise RuntimeError(f"{self.id} has already been run")

        self.state = ItemState.RUNNING
        started = self.context.clock()
        self.log.info('INFO_ITEM_START')

        try:
            with self.quiesced_timer():
                self.backup(depot_dir)
        except Exception as e:
            logger.debug(f"{self.id} raised", exc_info=True)
            self.log.critical('CRIT_ITEM_CRASHED', e)

        self.result.statistics.duration_ms = int((self.context.clock() - started) * 1000)
        self.state = ItemState.SUCCEEDED if self.result.succeeded else ItemState.FAILED
        stats = self.result.statistics
        self.log.info('INFO_ITEM_FINISHED', stats.duration_ms, stats.error_count, stats.warning_count)
        return self.result

    @abstractmethod
    def backup(self, depot_dir: str) -> None:
        """Produce this item's artifacts below ``depot_dir``."""

    @contextmanager
    def quiesced_timer(self) -> Iterator[None]:
        """Keep the item's systemd timer stopped while the body runs.

        Waits for a running timer job to finish first. The timer is started
        again on every exit path.
        """
        timer = self.option('timer')
        if not timer:
            yield
            return

        services = self.context.services
        job = ServiceHandle(timer, UnitKind.SERVICE)
        timer_unit = ServiceHandle(timer, UnitKind.TIMER)

        services.wait_until_inactive(job, self.option('timer_wait', DEFAULT_TIMER_WAIT),
                                     TIMER_POLL_INTERVAL, log=self.log)
        if not services.stop(timer_unit, log=self.log):
            self.log.warning('WARN_STOP_UNIT_FAILED', timer_unit.unit)
        try:
            yield
        finally:
            if not services.start(timer_unit, log=self.log):
                self.log.warning('WARN_START_UNIT_FAILED', timer_unit.unit)

    @contextmanager
    def stopped_service(self, service: Optional[str],
                        timeout: float = DEFAULT_SERVICE_STOP_TIMEOUT) -> Iterator[None]:
        """Keep ``service`` stopped while the body runs, then start it again."""
        if not service:
            yield
            return

        services = self.context.services
        handle = ServiceHandle.parse(service)
        if not services.stop(handle, timeout, 1, log=self.log):
            self.log.warning('WARN_STOP_UNIT_FAILED', handle.unit)
        try:
            yield
        finally:
            if not services.start(handle, log=self.log):
                self.log.warning('WARN_START_UNIT_FAILED', handle.unit)

    def checked_directories(self) -> Optional[List[str]]:
        """Configured directories without trailing slashes.

        Returns None after reporting a critical message if one of them does
        not exist.
        """
        directories = []
        for directory in self.option('directories', []) or []:
            path = directory.rstrip('/') or '/'
            if not os.path.isdir(path):
                self.log.critical('CRIT_DIR_NOT_EXISTS', path)
                return None
            directories.append(path)
        return directories

    def elapsed_ms(self, started: float) -> int:
        return int((self.context.clock() - started) * 1000)

    def discard(self, path: str) -> None:
        """Remove a partial or temporary file if it exists."""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove {path}: {e}")

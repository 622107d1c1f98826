"""Main backup orchestration class."""

import logging
import os
import shutil
import threading
import time
from typing import Callable, Iterable, List, Optional

from .errors import ExitCode, RunAbortedError
from .messages import BoundLog, RunLog
from .models import BackupConfig, BackupItemSpec, RunStatistics
from .postprocess import DumpPostProcessor
from .services import MaintenanceModeController, ServiceController
from ..config.config_manager import ConfigManager
from ..items import BackupItem, ItemContext, create_item, is_known_type, normalize_type
from ..utils.process import run_command

SKIP_OWNERSHIP = ('lost+found',)


class BackupManager:
    """Runs all eligible backup items of a configuration inside maintenance mode.

    Items run strictly one after another. A failing item never stops the
    items after it, and maintenance mode is switched off again on every path
    once it has been switched on.
    """

    def __init__(self, config: BackupConfig, run_log: Optional[RunLog] = None,
                 services: Optional[ServiceController] = None,
                 runner: Callable = run_command,
                 clock: Callable[[], float] = time.monotonic,
                 temp_dir: Optional[str] = None):
        """Initialize backup manager.

        Args:
            config: Validated run configuration.
            run_log: Message stream; a new one is created if omitted.
            services: Controller for systemd units, created from ``runner``
                and ``clock`` if omitted.
            runner: Callable used to run external tools.
            clock: Monotonic clock in seconds.
            temp_dir: Directory for temporary credential files.
        """
        self.config = config
        self.run_log = run_log or RunLog()
        self.runner = runner
        self.clock = clock
        self.temp_dir = temp_dir
        self.services = services or ServiceController(self.run_log, runner=runner, clock=clock)
        self.logger = logging.getLogger(__name__)
        self._cancelled = threading.Event()

    @classmethod
    def from_config_file(cls, config_path: Optional[str] = None, **kwargs) -> 'BackupManager':
        """Create a manager from a configuration file.

        Args:
            config_path: Optional path to configuration file.
        """
        return cls(ConfigManager(config_path).load_config(), **kwargs)

    def cancel(self) -> None:
        """Ask the run to stop before the next item starts."""
        self.logger.info("Cancellation requested")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, types: Optional[Iterable[str]] = None) -> RunStatistics:
        """Run the backup.

        Args:
            types: Optional allow-list of item type tags.

        Returns:
            Aggregated statistics of all executed items.

        Raises:
            RunAbortedError: If the depot is missing or no item is eligible.
                Nothing has been touched when this is raised.
        """
        stats = RunStatistics()
        log = self.run_log.bind('backup', sink=stats)
        started = self.clock()

        depot = self.config.depot
        if not os.path.isdir(depot):
            self._abort(log, ExitCode.FILESYSTEM_ERROR, 'CRIT_DEPOT_NOT_FOUND', depot)

        specs = self.select_items(log, types)

        postprocessor = DumpPostProcessor(
            os.path.join(depot, self.config.ledger_name),
            log,
            compression=self.config.compression,
            clock=self.clock,
        )
        context = ItemContext(
            run_log=self.run_log,
            services=self.services,
            postprocessor=postprocessor,
            runner=self.runner,
            clock=self.clock,
            temp_dir=self.temp_dir,
        )
        items = [create_item(spec, context) for spec in specs]

        log.info('INFO_RUN_START', len(items))

        maintenance = MaintenanceModeController(self.services, self.config.maintenance, log)
        with maintenance:
            if maintenance.enable_failed and self.config.maintenance.abort_on_failure:
                self.logger.debug("Skipping all items, maintenance mode is not enabled")
            else:
                self._run_items(items, depot, stats, log)
        stats.maintenance_restore_failed = maintenance.disable_failed

        if self.config.owner:
            self.chown_depot(self.config.owner, log)

        stats.duration_seconds = self.clock() - started
        log.info('INFO_RUN_FINISHED', stats.total_items, stats.duration_seconds,
                 stats.error_count, stats.warning_count)
        return stats

    def select_items(self, log: BoundLog, types: Optional[Iterable[str]] = None) -> List[BackupItemSpec]:
        """Filter the configured items down to those that will run.

        Disabled items and items outside the allow-list are skipped silently;
        items of an unknown type are dropped with a warning.

        Raises:
            RunAbortedError: If nothing is left to run.
        """
        if not self.config.items:
            self._abort(log, ExitCode.INVALID_CONFIG, 'CRIT_NO_ITEMS_CONFIGURED')

        allowed = None
        if types:
            allowed = {normalize_type(t) for t in types if normalize_type(t)}

        selected = []
        for spec in self.config.items:
            label = f"{spec.type}({spec.name})" if spec.name else str(spec.type)
            if not spec.enabled:
                log.info('INFO_ITEM_DISABLED', label)
            elif not is_known_type(spec.type):
                log.warning('WARN_INVALID_ITEM_TYPE', spec.type)
            elif allowed and normalize_type(spec.type) not in allowed:
                log.info('INFO_ITEM_FILTERED', label)
            else:
                selected.append(spec)

        if not selected:
            self._abort(log, ExitCode.INVALID_CONFIG, 'CRIT_NO_ITEMS_AVAILABLE')

        return selected

    def _run_items(self, items: List[BackupItem], depot: str, stats: RunStatistics,
                   log: BoundLog) -> None:
        for index, item in enumerate(items):
            if self.cancelled:
                stats.cancelled = True
                log.critical('CRIT_RUN_CANCELLED', len(items) - index)
                return

            try:
                item.run(depot)
            except Exception as e:
                self.logger.debug(f"{item.id} raised", exc_info=True)
                item.log.critical('CRIT_ITEM_CRASHED', e)
            stats.add_item(item.result)

    def chown_depot(self, owner: str, log: BoundLog) -> None:
        """Hand every depot entry except ``lost+found`` to ``owner`` (``user[:group]``).

        Symbolic links are left alone. The first failure is reported as a
        warning and ends the walk.
        """
        user, _, group = owner.partition(':')
        log.info('INFO_CHOWN', owner)

        for entry in sorted(os.listdir(self.config.depot)):
            if entry in SKIP_OWNERSHIP:
                continue
            top = os.path.join(self.config.depot, entry)
            paths = [top]
            if os.path.isdir(top) and not os.path.islink(top):
                for root, dirs, files in os.walk(top):
                    paths.extend(os.path.join(root, name) for name in dirs + files)

            for path in paths:
                if os.path.islink(path):
                    continue
                try:
                    shutil.chown(path, user=user or None, group=group or None)
                except (OSError, LookupError, ValueError) as e:
                    log.warning('WARN_CHOWN_FAILED', path, owner, e)
                    return

    def _abort(self, log: BoundLog, exit_code: ExitCode, key: str, *args) -> None:
        message = log.critical(key, *args)
        raise RunAbortedError(log.render(message), key, exit_code)

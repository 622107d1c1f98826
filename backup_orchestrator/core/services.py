"""Control of systemd service and timer units."""

import logging
import time
from typing import Callable, Optional, Union

from .errors import CommandError, ServiceCheckError
from .messages import BoundLog, RunLog
from .models import MaintenanceSettings, MaintenanceState, ServiceHandle, WaitResult
from ..utils.process import run_command

logger = logging.getLogger(__name__)

Unit = Union[str, ServiceHandle]


class ServiceController:
    """Starts, stops and watches systemd units through ``systemctl``.

    Failures to start or stop a unit are returned to the caller, which
    decides how severe they are. Waiting for a unit to stop never raises;
    the outcome is returned as a :class:`WaitResult`.
    """

    def __init__(self, log: Union[RunLog, BoundLog], runner: Callable = run_command,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic,
                 systemctl: str = 'systemctl', command_timeout: float = 120):
        """Initialize service controller.

        Args:
            log: Message stream used when the caller does not pass its own.
            runner: Callable with the signature of :func:`run_command`.
            sleep: Function used to wait between activity checks.
            clock: Monotonic clock in seconds.
            systemctl: Name or path of the systemctl binary.
            command_timeout: Seconds a single systemctl call may take.
        """
        self.log = log
        self.runner = runner
        self.sleep = sleep
        self.clock = clock
        self.systemctl = systemctl
        self.command_timeout = command_timeout

    @staticmethod
    def handle(unit: Unit) -> ServiceHandle:
        if isinstance(unit, ServiceHandle):
            return unit
        return ServiceHandle.parse(unit)

    def start(self, unit: Unit, log: Optional[BoundLog] = None) -> bool:
        """Start a unit. Returns False if systemctl failed."""
        handle = self.handle(unit)
        (log or self.log).info('INFO_START_UNIT', handle.unit)
        ok = self._action('start', handle)
        if ok:
            handle.active = True
        return ok

    def stop(self, unit: Unit, timeout_seconds: float = 0, poll_interval_seconds: float = 1,
             log: Optional[BoundLog] = None) -> bool:
        """Stop a unit and optionally wait for it to become inactive.

        The outcome of the wait is stored on the handle as ``last_wait`` and
        reported through the message stream. Only the stop action itself
        decides the return value.
        """
        handle = self.handle(unit)
        log = log or self.log
        log.info('INFO_STOP_UNIT', handle.unit)
        handle.last_wait = None
        if not self._action('stop', handle):
            return False
        if timeout_seconds > 0:
            handle.last_wait = self.wait_until_inactive(handle, timeout_seconds,
                                                        poll_interval_seconds, log=log)
        return True

    def is_active(self, unit: Unit) -> bool:
        """Check whether a unit is active.

        Raises:
            ServiceCheckError: If systemctl could not answer.
        """
        handle = self.handle(unit)
        try:
            result = self.runner([self.systemctl, '--quiet', 'is-active', handle.unit],
                                 timeout=self.command_timeout)
        except CommandError as e:
            raise ServiceCheckError(str(e))

        if result.returncode < 0:
            raise ServiceCheckError(f"systemctl terminated by signal {-result.returncode}")

        handle.active = result.returncode == 0
        return handle.active

    def wait_until_inactive(self, unit: Unit, timeout_seconds: float,
                            poll_interval_seconds: float,
                            log: Optional[BoundLog] = None) -> WaitResult:
        """Poll a unit until it is inactive or the timeout elapsed.

        Returns TIMED_OUT only once at least ``timeout_seconds`` have passed.
        A failing activity check returns CHECK_FAILED right away.
        """
        handle = self.handle(unit)
        log = log or self.log
        started = self.clock()

        while True:
            try:
                active = self.is_active(handle)
            except ServiceCheckError as e:
                log.warning('WARN_UNIT_CHECK_FAILED', handle.unit, e)
                return WaitResult.CHECK_FAILED

            if not active:
                return WaitResult.STOPPED

            elapsed = self.clock() - started
            if elapsed >= timeout_seconds:
                log.warning('WARN_UNIT_ACTIVE_TOO_LONG', elapsed, timeout_seconds, handle.unit)
                return WaitResult.TIMED_OUT

            delay = min(poll_interval_seconds, timeout_seconds - elapsed)
            log.info('INFO_UNIT_STILL_ACTIVE', handle.unit, delay)
            self.sleep(delay)

    def _action(self, action: str, handle: ServiceHandle) -> bool:
        try:
            result = self.runner([self.systemctl, action, handle.unit],
                                 timeout=self.command_timeout)
        except CommandError as e:
            logger.debug(f"systemctl {action} {handle.unit} failed: {e}")
            return False
        if not result.ok:
            logger.debug(f"systemctl {action} {handle.unit} failed: {result.error_text()}")
        return result.ok


class MaintenanceModeController:
    """Symmetric enable/disable of the maintenance-mode unit.

    Use it as a context manager: maintenance mode is enabled on entry and,
    if enabling succeeded, disabled again on every exit path.
    """

    def __init__(self, services: ServiceController, settings: Optional[MaintenanceSettings],
                 log: BoundLog):
        self.services = services
        self.settings = settings
        self.log = log
        self.state = MaintenanceState.DISABLED
        self.enable_failed = False
        self.disable_failed = False

    @property
    def configured(self) -> bool:
        return self.settings is not None

    @property
    def unit(self) -> Optional[str]:
        return self.settings.unit if self.settings else None

    def enable(self) -> bool:
        """Switch maintenance mode on.

        Returns True if maintenance mode is on afterwards or no unit is
        configured. A failure is reported as a warning, or as a critical
        message when the settings ask to abort on failure.
        """
        if not self.configured:
            self.log.info('INFO_MAINTENANCE_NOT_CONFIGURED')
            return True
        if self.state is MaintenanceState.ENABLED:
            return True

        self.state = MaintenanceState.ENABLING
        self.log.info('INFO_MAINTENANCE_ENABLE', self.unit)

        if self.services.start(self.unit, log=self.log):
            self.state = MaintenanceState.ENABLED
            self.log.info('INFO_MAINTENANCE_ENABLED')
            return True

        self.state = MaintenanceState.DISABLED
        self.enable_failed = True
        if self.settings.abort_on_failure:
            self.log.critical('CRIT_MAINTENANCE_ENABLE_FAILED', self.unit)
        else:
            self.log.warning('WARN_MAINTENANCE_ENABLE_FAILED', self.unit)
        return False

    def disable(self) -> bool:
        """Switch maintenance mode off if this controller switched it on.

        A failure is reported as critical and never retried.
        """
        if self.state is not MaintenanceState.ENABLED:
            return True

        self.state = MaintenanceState.DISABLING
        self.log.info('INFO_MAINTENANCE_DISABLE', self.unit)

        if self.services.stop(self.unit, self.settings.stop_timeout,
                              self.settings.poll_interval, log=self.log):
            self.state = MaintenanceState.DISABLED
            self.log.info('INFO_MAINTENANCE_DISABLED')
            return True

        self.state = MaintenanceState.ENABLED
        self.disable_failed = True
        self.log.critical('CRIT_MAINTENANCE_DISABLE_FAILED', self.unit)
        return False

    def __enter__(self) -> 'MaintenanceModeController':
        self.enable()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disable()

"""
Shared pytest fixtures for backup orchestrator tests.

This module provides fixtures for:
- A depot directory and run configuration factory
- A fake command runner that simulates systemctl and external dump tools
- A fake monotonic clock whose sleep advances time instantly
- Service controller, post-processor and item context wired to the fakes

No external tool is ever executed by the test suite.
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest

from backup_orchestrator.core.errors import CommandError
from backup_orchestrator.core.messages import RunLog
from backup_orchestrator.core.models import BackupConfig, BackupItemSpec, MaintenanceSettings
from backup_orchestrator.core.postprocess import DumpPostProcessor
from backup_orchestrator.core.services import ServiceController
from backup_orchestrator.items import ItemContext
from backup_orchestrator.utils.process import CommandResult


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Call:
    args: List[str]
    stdout_path: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    cwd: Optional[str] = None

    @property
    def program(self) -> str:
        return os.path.basename(self.args[0])


class FakeRunner:
    """Stand-in for ``run_command``.

    ``systemctl`` is simulated with a set of active units. Other programs
    succeed with empty output unless a behaviour was registered with
    :meth:`on`.
    """

    def __init__(self):
        self.calls: List[Call] = []
        self.active_units = set()
        self.sticky_units = set()
        self.failing_actions: Dict[str, set] = {}
        self.broken_checks = set()
        self.handlers = {}

    def __call__(self, args, stdout_path=None, env=None, cwd=None, timeout=None):
        args = [str(arg) for arg in args]
        call = Call(args, stdout_path, env, cwd)
        self.calls.append(call)

        if call.program == 'systemctl':
            return self._systemctl(args)

        handler = self.handlers.get(call.program)
        if handler is None:
            return CommandResult(args=args, returncode=0)
        return handler(call)

    def on(self, program, output=b'', returncode=0, stdout='', stderr='', raises=None,
           handler=None):
        """Register the behaviour of an external program."""
        if handler is not None:
            self.handlers[program] = handler
            return

        def respond(call):
            if raises is not None:
                raise raises
            if call.stdout_path:
                with open(call.stdout_path, 'wb') as f:
                    f.write(output)
            return CommandResult(args=call.args, returncode=returncode, stdout=stdout, stderr=stderr)

        self.handlers[program] = respond

    def fail(self, unit, *actions):
        """Make systemctl ``actions`` (start, stop) fail for ``unit``."""
        self.failing_actions.setdefault(unit, set()).update(actions)

    def _systemctl(self, args):
        if args[1] == '--quiet':
            unit = args[3]
            if unit in self.broken_checks:
                raise CommandError('systemctl is-active failed', args)
            return CommandResult(args=args, returncode=0 if unit in self.active_units else 3)

        action, unit = args[1], args[2]
        if action in self.failing_actions.get(unit, ()):
            return CommandResult(args=args, returncode=1, stderr=f"Failed to {action} {unit}")
        if action == 'start':
            self.active_units.add(unit)
        elif action == 'stop' and unit not in self.sticky_units:
            self.active_units.discard(unit)
        return CommandResult(args=args, returncode=0)

    def calls_to(self, program) -> List[Call]:
        return [call for call in self.calls if call.program == program]

    def systemctl_actions(self) -> List[tuple]:
        """(action, unit) pairs of all start/stop calls, in order."""
        return [(call.args[1], call.args[2]) for call in self.calls_to('systemctl')
                if call.args[1] in ('start', 'stop')]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def run_log():
    return RunLog()


@pytest.fixture
def depot(tmp_path):
    """Empty depot directory."""
    path = tmp_path / 'depot'
    path.mkdir()
    return path


@pytest.fixture
def services(run_log, fake_runner, fake_clock):
    return ServiceController(run_log, runner=fake_runner, sleep=fake_clock.sleep, clock=fake_clock)


@pytest.fixture
def postprocessor(depot, run_log, fake_clock):
    return DumpPostProcessor(str(depot / 'sha256sums.txt'), run_log, clock=fake_clock)


@pytest.fixture
def item_context(run_log, services, postprocessor, fake_runner, fake_clock, tmp_path):
    temp_dir = tmp_path / 'tmp'
    temp_dir.mkdir()
    return ItemContext(
        run_log=run_log,
        services=services,
        postprocessor=postprocessor,
        runner=fake_runner,
        clock=fake_clock,
        temp_dir=str(temp_dir),
    )


@pytest.fixture
def make_spec():
    """Factory for item specs: ``make_spec('sync', 'home', source='/srv')``."""
    def _make(type_tag, name='', enabled=True, **options):
        return BackupItemSpec(name=name, type=type_tag, options=options, enabled=enabled)
    return _make


@pytest.fixture
def make_config(depot):
    """Factory for run configurations rooted at the ``depot`` fixture."""
    def _make(items, maintenance_unit=None, abort_on_failure=False, **kwargs):
        maintenance = None
        if maintenance_unit:
            maintenance = MaintenanceSettings(unit=maintenance_unit, stop_timeout=5,
                                              poll_interval=1, abort_on_failure=abort_on_failure)
        kwargs.setdefault('depot', str(depot))
        return BackupConfig(items=tuple(items), maintenance=maintenance, **kwargs)
    return _make


@pytest.fixture
def source_tree(tmp_path):
    """Directory with a couple of files to synchronize."""
    root = tmp_path / 'source'
    (root / 'sub').mkdir(parents=True)
    (root / 'a.txt').write_text('alpha')
    (root / 'sub' / 'b.txt').write_text('beta')
    return root

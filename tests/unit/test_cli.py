"""
Unit tests for the command-line interface (backup_orchestrator/cli.py).
"""

import hashlib
import json
import logging

import pytest
from click.testing import CliRunner

from backup_orchestrator import cli as cli_module
from backup_orchestrator.cli import cli
from backup_orchestrator.core.models import RunStatistics


@pytest.fixture(autouse=True)
def restore_root_logging():
    """The CLI reconfigures the root logger; put it back after each test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, depot):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'global': {'depot': str(depot)},
        'items': [
            {'type': 'database', 'name': 'orders'},
            {'type': 'sync', 'name': 'home', 'source': '/home'},
        ],
    }))
    return str(path)


class FakeManager:
    """BackupManager replacement returning canned statistics."""

    instances = []

    def __init__(self, config, stats=None, error=None):
        self.config = config
        self.stats = stats
        self.error = error
        self.types = None
        FakeManager.instances.append(self)

    def cancel(self):
        pass

    def run(self, types=None):
        self.types = types
        if self.error:
            raise self.error
        return self.stats


@pytest.fixture
def fake_manager(monkeypatch):
    """Install a fake manager; returns a function to set its outcome."""
    FakeManager.instances = []
    outcome = {}

    def factory(config):
        return FakeManager(config, **outcome)
    monkeypatch.setattr(cli_module, 'BackupManager', factory)

    def configure(stats=None, error=None):
        outcome.update(stats=stats, error=error)
    return configure


class TestRunCommand:
    """Test the run command."""

    def test_success_exit_code(self, runner, config_file, fake_manager):
        """Test a run without errors exits 0 and prints a summary."""
        fake_manager(stats=RunStatistics(total_items=2, warning_count=3))

        result = runner.invoke(cli, ['-c', config_file, 'run'])

        assert result.exit_code == 0
        assert 'Items: 2' in result.output
        assert 'Warnings: 3' in result.output

    def test_errors_exit_non_zero(self, runner, config_file, fake_manager):
        """Test any error makes the exit status non-zero."""
        fake_manager(stats=RunStatistics(total_items=2, error_count=1))

        result = runner.invoke(cli, ['-c', config_file, 'run'])

        assert result.exit_code == 2

    def test_type_filter_is_split(self, runner, config_file, fake_manager):
        """Test the comma separated type filter reaches the manager."""
        fake_manager(stats=RunStatistics())

        runner.invoke(cli, ['-c', config_file, 'run', '-t', 'Database, sync,'])

        assert FakeManager.instances[0].types == ['database', 'sync']

    def test_aborted_run_uses_its_exit_code(self, runner, config_file, fake_manager):
        """Test a run-level abort maps to its exit code."""
        from backup_orchestrator.core.errors import ExitCode, RunAbortedError
        fake_manager(error=RunAbortedError("depot missing", 'CRIT_DEPOT_NOT_FOUND',
                                           ExitCode.FILESYSTEM_ERROR))

        result = runner.invoke(cli, ['-c', config_file, 'run'])

        assert result.exit_code == 1

    def test_invalid_config_exit_code(self, runner, tmp_path):
        """Test configuration errors exit with code 6."""
        path = tmp_path / 'config.json'
        path.write_text('[]')

        result = runner.invoke(cli, ['-c', str(path), 'run'])

        assert result.exit_code == 6

    def test_missing_depot_end_to_end(self, runner, tmp_path):
        """Test the real manager aborts on a missing depot."""
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({
            'global': {'depot': str(tmp_path / 'missing')},
            'items': [{'type': 'sync', 'name': 'home', 'source': '/home'}],
        }))

        result = runner.invoke(cli, ['-c', str(path), 'run'])

        assert result.exit_code == 1
        assert not (tmp_path / 'missing').exists()


class TestValidateConfigCommand:
    """Test the validate-config command."""

    def test_summary(self, runner, config_file, depot):
        """Test a valid configuration prints its items."""
        result = runner.invoke(cli, ['-c', config_file, 'validate-config'])

        assert result.exit_code == 0
        assert f"Depot: {depot}" in result.output
        assert "database: orders" in result.output
        assert "sync: home" in result.output

    def test_invalid(self, runner, tmp_path):
        """Test an invalid configuration exits with code 6."""
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'global': {}, 'items': []}))

        result = runner.invoke(cli, ['-c', str(path), 'validate-config'])

        assert result.exit_code == 6


class TestVerifyCommand:
    """Test the verify command."""

    def test_verified(self, runner, config_file, depot):
        """Test an intact depot verifies."""
        (depot / 'alpha.sql').write_bytes(b'TESTDATA')
        digest = hashlib.sha256(b'TESTDATA').hexdigest()
        (depot / 'sha256sums.txt').write_text(f"{digest}  alpha.sql\n")

        result = runner.invoke(cli, ['-c', config_file, 'verify'])

        assert result.exit_code == 0
        assert '1 verified' in result.output

    def test_mismatch(self, runner, config_file, depot):
        """Test a tampered file fails verification."""
        (depot / 'alpha.sql').write_bytes(b'tampered')
        digest = hashlib.sha256(b'TESTDATA').hexdigest()
        (depot / 'sha256sums.txt').write_text(f"{digest}  alpha.sql\n")

        result = runner.invoke(cli, ['-c', config_file, 'verify'])

        assert result.exit_code == 2
        assert 'Checksum mismatch: alpha.sql' in result.output

    def test_missing_ledger(self, runner, config_file):
        """Test a depot without ledger is a filesystem error."""
        result = runner.invoke(cli, ['-c', config_file, 'verify'])

        assert result.exit_code == 1

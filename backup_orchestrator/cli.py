"""Command-line interface for backup orchestrator."""

import logging
import signal
import sys
from contextlib import contextmanager
from typing import Optional

import click

from .config.config_manager import ConfigManager
from .core.errors import ExitCode, RunAbortedError
from .core.manager import BackupManager
from .core.postprocess import verify_ledger
from .items import is_known_type
from .utils.formatters import format_duration, format_file_size, parse_type_list

CONFIG_HELP = ('Path to configuration file. Searched by default in: '
               + ', '.join(ConfigManager.DEFAULT_CONFIG_LOCATIONS))


def setup_logging(level: str, log_file: Optional[str] = None):
    """Set up logging configuration."""
    # Convert string level to logging constant
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {level}')

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except Exception as e:
            click.echo(f"Warning: Could not set up file logging: {e}", err=True)


def load_config(config_path: Optional[str]):
    """Load the configuration or exit with the invalid configuration code."""
    try:
        return ConfigManager(config_path).load_config()
    except (FileNotFoundError, ValueError) as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(ExitCode.INVALID_CONFIG)


@contextmanager
def cancel_on_signals(manager: BackupManager):
    """Turn SIGINT and SIGTERM into a cancellation request while the body runs."""
    def handler(signum, frame):
        manager.cancel()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)


@click.group()
@click.option('--config', '-c', 'config_path', help=CONFIG_HELP)
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], case_sensitive=False),
              help='Logging level')
@click.option('--log-file',
              help='Log file path')
@click.pass_context
def cli(ctx, config_path: Optional[str], log_level: str, log_file: Optional[str]):
    """Backup Orchestrator - Dump databases and mail stores and sync directories into a depot."""

    # Ensure context exists
    ctx.ensure_object(dict)

    # Set up logging first
    setup_logging(log_level, log_file)

    ctx.obj['config_path'] = config_path


@cli.command()
@click.option('--type', '-t', 'types', default='',
              help='Comma separated list of item types to run, e.g. database,sync')
@click.pass_context
def run(ctx, types: str):
    """Run all enabled backup items."""
    config = load_config(ctx.obj.get('config_path'))

    type_filter = parse_type_list(types)
    for type_tag in type_filter:
        if not is_known_type(type_tag):
            click.echo(f"⚠️  Unknown item type in filter: {type_tag}", err=True)

    manager = BackupManager(config)
    try:
        with cancel_on_signals(manager):
            stats = manager.run(type_filter or None)
    except RunAbortedError as e:
        click.echo(f"❌ Backup aborted: {e}", err=True)
        sys.exit(e.exit_code)
    except Exception as e:
        click.echo(f"Error during backup: {e}", err=True)
        sys.exit(ExitCode.BACKUP_FAILED)

    click.echo("\n📊 Summary:")
    click.echo(f"  Items: {stats.total_items}")
    click.echo(f"  Errors: {stats.error_count}")
    click.echo(f"  Warnings: {stats.warning_count}")
    click.echo(f"  Files: {stats.file_count:,}")
    click.echo(f"  Size: {format_file_size(stats.total_bytes)}")
    click.echo(f"  Duration: {format_duration(stats.duration_seconds)}")

    if stats.maintenance_restore_failed:
        click.echo("  ⚠️  Maintenance mode could not be disabled", err=True)
    if stats.cancelled:
        click.echo("  ⚠️  Run was cancelled", err=True)

    if not stats.passed:
        sys.exit(ExitCode.BACKUP_FAILED)


@cli.command()
@click.pass_context
def validate_config(ctx):
    """Validate configuration file."""
    config = load_config(ctx.obj.get('config_path'))

    click.echo("✅ Configuration loaded successfully")

    click.echo(f"\n📊 Configuration Summary:")
    click.echo(f"   Depot: {config.depot}")
    click.echo(f"   Compression: {config.compression}")
    if config.maintenance:
        click.echo(f"   Maintenance unit: {config.maintenance.unit}")
    else:
        click.echo("   Maintenance unit: Not configured")
    click.echo(f"   Backup items: {len(config.items)}")

    for i, spec in enumerate(config.items, 1):
        notes = []
        if not spec.enabled:
            notes.append('disabled')
        if not is_known_type(spec.type):
            notes.append('unknown type, will be skipped')
        suffix = f" [{', '.join(notes)}]" if notes else ''
        click.echo(f"     {i}. {spec.type}: {spec.name or '-'}{suffix}")


@cli.command()
@click.pass_context
def verify(ctx):
    """Verify the checksum ledger of the depot."""
    config = load_config(ctx.obj.get('config_path'))

    try:
        report = verify_ledger(config.depot, config.ledger_name)
    except OSError as e:
        click.echo(f"❌ Can not read checksum ledger: {e}", err=True)
        sys.exit(ExitCode.FILESYSTEM_ERROR)

    for name in report.mismatched:
        click.echo(f"❌ Checksum mismatch: {name}")
    for name in report.missing:
        click.echo(f"❌ Missing: {name}")

    click.echo(f"\n{len(report.verified)} verified, {len(report.mismatched)} mismatched, "
               f"{len(report.missing)} missing")

    if not report.ok:
        sys.exit(ExitCode.BACKUP_FAILED)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == '__main__':
    main()

"""Structured message stream for backup runs.

Every message carries a severity, a stable identifier and positional
parameters. The core only ever calls into a :class:`RunLog`; turning a
message into text happens here, through a catalog keyed by identifier, and
the rendered line is forwarded to a standard library logger.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Severity(Enum):
    INFO = 'INFO'
    WARN = 'WARN'
    CRIT = 'CRIT'


MESSAGES: Dict[str, str] = {
    # run
    'INFO_RUN_START': "Starting backup of {0} items.",
    'INFO_RUN_FINISHED': "Finished backup of {0} items in {1:.1f} seconds. Errors: {2}, Warnings: {3}",
    'INFO_ITEM_DISABLED': "{0} is disabled, skipping.",
    'INFO_ITEM_FILTERED': "{0} is not of a requested type, skipping.",
    'CRIT_DEPOT_NOT_FOUND': "Can not find depot directory at {0}.",
    'CRIT_NO_ITEMS_CONFIGURED': "No backup items have been configured.",
    'CRIT_NO_ITEMS_AVAILABLE': "No backup items are available.",
    'WARN_INVALID_ITEM_TYPE': "{0} is not a valid backup item type. Omitting this entry.",
    'CRIT_ITEM_CRASHED': "Backup item failed unexpectedly: {0}",
    'CRIT_RUN_CANCELLED': "Run cancelled, skipping {0} remaining items.",
    'INFO_CHOWN': "Changing owner of depot entries to {0}.",
    'WARN_CHOWN_FAILED': "Failed to change owner of {0} to {1}: {2}",
    # maintenance mode
    'INFO_MAINTENANCE_NOT_CONFIGURED': "No maintenance unit configured, running without maintenance mode.",
    'INFO_MAINTENANCE_ENABLE': "Enabling maintenance mode via {0}.",
    'INFO_MAINTENANCE_ENABLED': "Maintenance mode enabled.",
    'WARN_MAINTENANCE_ENABLE_FAILED': "Failed to enable maintenance mode via {0}, continuing without it.",
    'CRIT_MAINTENANCE_ENABLE_FAILED': "Failed to enable maintenance mode via {0}, skipping all items.",
    'INFO_MAINTENANCE_DISABLE': "Disabling maintenance mode via {0}.",
    'INFO_MAINTENANCE_DISABLED': "Maintenance mode disabled.",
    'CRIT_MAINTENANCE_DISABLE_FAILED': "Failed to disable maintenance mode via {0}. Manual intervention required.",
    # services and timers
    'INFO_START_UNIT': "Starting {0}.",
    'INFO_STOP_UNIT': "Stopping {0}.",
    'WARN_START_UNIT_FAILED': "Failed to start {0}.",
    'WARN_STOP_UNIT_FAILED': "Failed to stop {0}.",
    'INFO_UNIT_STILL_ACTIVE': "{0} is still active, waiting {1} seconds for it to finish.",
    'WARN_UNIT_ACTIVE_TOO_LONG': "Waited {0:.0f} of {1:.0f} seconds for {2} to finish without success.",
    'WARN_UNIT_CHECK_FAILED': "Failed to check if {0} is active: {1}",
    # items
    'INFO_ITEM_START': "Starting backup.",
    'INFO_ITEM_FINISHED': "Finished backup in {0} milliseconds. Errors: {1}, Warnings: {2}",
    'CRIT_DIR_NOT_EXISTS': "{0} does not exist or is not a directory.",
    # database dumps
    'CRIT_INVALID_DB_ENGINE': "{0} is not a supported database engine.",
    'CRIT_PASSWORD_FILE': "Can not read password file {0}: {1}",
    'INFO_DUMP_START': "Starting dump of database {0}.",
    'CRIT_TEMP_CONFIG_FAILED': "Failed to create temporary configuration file for database {0}: {1}",
    'CRIT_DUMP_FAILED': "Failed to create database dump of {0}: {1}",
    'INFO_DUMP_FINISHED': "Finished dump of database {0} with {1} bytes in {2} milliseconds.",
    'WARN_DUMP_OVERWRITTEN': "{0} has already been written in this run and is overwritten.",
    # mailbox dumps
    'WARN_MAIL_CONFIG_DIR_NOT_FOUND': "Can not find mail server configuration directory, omitting dumping of mailboxes database.",
    'WARN_MAIL_LIST_TOOL_NOT_FOUND': "Can not find {0} executable, omitting dumping of mailboxes database.",
    'INFO_MAILBOX_DUMP_START': "Starting dump of mailboxes database.",
    'INFO_MAILBOX_DUMP_FINISHED': "Finished dump of mailboxes database with {0} bytes in {1} milliseconds.",
    'CRIT_MAILBOX_DUMP_FAILED': "Failed to dump mailboxes database: {0}",
    # post-processing
    'INFO_HASH_FINISHED': "Calculated SHA256 hash sum of {0} in {1} milliseconds: {2}",
    'WARN_HASH_OPEN_FAILED': "Failed to open {0}, omitting SHA256 hash sum calculation.",
    'WARN_LEDGER_OPEN_FAILED': "Failed to open {0} for writing SHA256 hash values.",
    'INFO_COMPRESS_START': "Starting compression of {0}.",
    'INFO_COMPRESS_FINISHED': "Finished compression of {0} with {1} bytes in {2} milliseconds.",
    'CRIT_COMPRESS_FAILED': "Failed to compress {0}: {1}",
    'WARN_REMOVE_RAW_FAILED': "Failed to remove uncompressed file {0}: {1}",
    # directory sync
    'INFO_SYNC_START': "Started syncing {0}.",
    'INFO_SYNC_FINISHED': "Finished syncing {0} in {1} milliseconds: Files: {2}, Size: {3} bytes",
    'CRIT_SYNC_FAILED': "Failed to sync {0}: {1}",
    'WARN_SYNC_VANISHED': "Some files vanished while syncing {0}.",
}

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.CRIT: logging.CRITICAL,
}


@dataclass(frozen=True)
class Message:
    """A single entry of the message stream."""
    severity: Severity
    key: str
    args: Tuple[Any, ...] = ()
    subject: Optional[str] = None


class RunLog:
    """Collects structured messages and forwards them to a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None,
                 catalog: Optional[Dict[str, str]] = None):
        self.logger = logger or logging.getLogger('backup_orchestrator.run')
        self.catalog = MESSAGES if catalog is None else catalog
        self.messages: List[Message] = []

    def emit(self, severity: Severity, key: str, *args: Any,
             subject: Optional[str] = None) -> Message:
        message = Message(severity=severity, key=key, args=args, subject=subject)
        self.messages.append(message)
        self.logger.log(_LOG_LEVELS[severity], self.render(message))
        return message

    def info(self, key: str, *args: Any, subject: Optional[str] = None) -> Message:
        return self.emit(Severity.INFO, key, *args, subject=subject)

    def warning(self, key: str, *args: Any, subject: Optional[str] = None) -> Message:
        return self.emit(Severity.WARN, key, *args, subject=subject)

    def critical(self, key: str, *args: Any, subject: Optional[str] = None) -> Message:
        return self.emit(Severity.CRIT, key, *args, subject=subject)

    def bind(self, subject: str, sink: Any = None) -> 'BoundLog':
        """Return a view that prefixes every message with ``subject``.

        If ``sink`` is given, every warning is recorded through its
        ``add_warning`` and every critical message through its ``add_error``.
        """
        return BoundLog(self, subject, sink)

    def render(self, message: Message) -> str:
        template = self.catalog.get(message.key)
        if template is None:
            text = ' '.join([message.key] + [str(arg) for arg in message.args])
        else:
            try:
                text = template.format(*message.args)
            except (IndexError, ValueError):
                text = f"{template} {message.args}"
        if message.subject:
            return f"{message.subject}: {text}"
        return text

    def keys(self, severity: Optional[Severity] = None) -> List[str]:
        """Identifiers of all recorded messages, optionally of one severity."""
        return [m.key for m in self.messages if severity is None or m.severity == severity]


class BoundLog:
    """A :class:`RunLog` view bound to one subject, usually a backup item."""

    def __init__(self, run_log: RunLog, subject: str, sink: Any = None):
        self.run_log = run_log
        self.subject = subject
        self.sink = sink

    def info(self, key: str, *args: Any) -> Message:
        return self.run_log.info(key, *args, subject=self.subject)

    def warning(self, key: str, *args: Any) -> Message:
        message = self.run_log.warning(key, *args, subject=self.subject)
        if self.sink is not None:
            self.sink.add_warning(self.render(message))
        return message

    def critical(self, key: str, *args: Any) -> Message:
        message = self.run_log.critical(key, *args, subject=self.subject)
        if self.sink is not None:
            self.sink.add_error(self.render(message))
        return message

    def render(self, message: Message) -> str:
        return self.run_log.render(message)

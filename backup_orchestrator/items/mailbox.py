"""Mail store backups: mailbox index dump plus mail spool synchronization."""

import os
from typing import Optional

from .base import BackupItem
from .sync import sync_directory
from ..core.errors import CommandError
from ..core.models import ItemType
from ..utils.process import find_executable

MAILBOX_LIST_TOOL = 'ctl_mboxlist'
MAILBOX_DATABASE = 'mailboxes.db'
DEFAULT_MAIL_SERVICE = 'cyrus-imapd'
MAIL_SERVICE_STOP_TIMEOUT = 60

TOOL_DIRECTORIES = (
    '/usr/lib/cyrus',
    '/usr/lib/cyrus/bin',
    '/usr/libexec/cyrus',
    '/usr/libexec/cyrus/bin',
)


class MailboxDumpItem(BackupItem):
    """Dumps the Cyrus mailbox list and mirrors the mail directories.

    A missing configuration directory or list utility is not a failure: the
    dump is skipped with a warning and the directories are still synced.
    The mail service is kept stopped while the directories are synced.
    """

    type_tag = ItemType.MAILBOX.value

    def backup(self, depot_dir: str) -> None:
        directories = self.checked_directories()
        if directories is None:
            return

        self.dump_mailboxes(depot_dir)

        if not directories:
            return

        destination = os.path.join(depot_dir, self.option('destination') or self.name)
        service = self.option('service', DEFAULT_MAIL_SERVICE)
        with self.stopped_service(service, self.option('stop_timeout', MAIL_SERVICE_STOP_TIMEOUT)):
            for directory in directories:
                if not sync_directory(directory, destination, self.log, self.result,
                                      self.context.runner, self.context.clock):
                    return

    def config_directory(self) -> Optional[str]:
        """The configured directory, or the first synced one holding the mailbox database."""
        configured = self.option('config_directory')
        if configured:
            return configured if os.path.isdir(configured) else None

        for directory in self.option('directories', []) or []:
            if os.path.isfile(os.path.join(directory, MAILBOX_DATABASE)):
                return directory.rstrip('/') or '/'
        return None

    def dump_mailboxes(self, depot_dir: str) -> bool:
        config_dir = self.config_directory()
        if config_dir is None:
            self.log.warning('WARN_MAIL_CONFIG_DIR_NOT_FOUND')
            return False

        list_tool = self.option('list_tool', MAILBOX_LIST_TOOL)
        tool = find_executable(list_tool, TOOL_DIRECTORIES)
        if tool is None:
            self.log.warning('WARN_MAIL_LIST_TOOL_NOT_FOUND', list_tool)
            return False

        self.log.info('INFO_MAILBOX_DUMP_START')
        started = self.context.clock()
        dump_path = os.path.join(depot_dir, f"{self.name or 'mail'}-mailboxes.txt")

        try:
            result = self.context.runner([tool, '-d'], stdout_path=dump_path, cwd=config_dir)
        except CommandError as e:
            self.log.critical('CRIT_MAILBOX_DUMP_FAILED', e)
            self.discard(dump_path)
            return False

        if not result.ok:
            self.log.critical('CRIT_MAILBOX_DUMP_FAILED', result.error_text())
            self.discard(dump_path)
            return False

        self.log.info('INFO_MAILBOX_DUMP_FINISHED', os.path.getsize(dump_path),
                      self.elapsed_ms(started))

        artifact = self.context.postprocessor.process(dump_path, log=self.log)
        self.result.add_artifact(artifact)
        return True

"""File tree synchronization with rsync."""

import os
import re
from typing import Callable, List, Optional, Tuple

from .base import BackupItem
from ..core.errors import CommandError
from ..core.messages import BoundLog
from ..core.models import ItemResult, ItemType

RSYNC_OPTIONS = ['-aR', '--delete', '--delete-after', '--stats']

# rsync exit status for "some files vanished before they could be transferred"
RSYNC_PARTIAL_VANISHED = 24

_FILES_PATTERN = re.compile(r'^Number of files:\s*(.+)$', re.MULTILINE)
_SIZE_PATTERN = re.compile(r'^Total file size:\s*([\d.,]+)', re.MULTILINE)
_REG_PATTERN = re.compile(r'reg:\s*([\d.,]+)')


def _digits(text: str) -> int:
    value = re.sub(r'\D', '', text)
    return int(value) if value else 0


def parse_rsync_stats(output: str) -> Tuple[int, int]:
    """Extract the regular file count and total size from ``rsync --stats``.

    Newer rsync versions break the file count down by kind
    (``Number of files: 12 (reg: 10, dir: 2)``); only regular files are
    counted then. Thousands separators are ignored.

    Returns:
        Tuple of (file_count, total_bytes). Missing values are 0.
    """
    files = 0
    match = _FILES_PATTERN.search(output)
    if match:
        reg = _REG_PATTERN.search(match.group(1))
        files = _digits(reg.group(1)) if reg else _digits(match.group(1).split('(')[0])

    size = 0
    match = _SIZE_PATTERN.search(output)
    if match:
        size = _digits(match.group(1))

    return files, size


def sync_directory(source: str, destination: str, log: BoundLog, result: ItemResult,
                   runner: Callable, clock: Callable[[], float],
                   rsync: str = 'rsync') -> bool:
    """Mirror ``source`` below ``destination``, keeping the full source path.

    Statistics reported by rsync are added to ``result``. A failing rsync
    invocation is reported as critical.
    """
    log.info('INFO_SYNC_START', source)
    started = clock()

    try:
        os.makedirs(destination, exist_ok=True)
    except OSError as e:
        log.critical('CRIT_SYNC_FAILED', source, e)
        return False

    try:
        completed = runner([rsync] + RSYNC_OPTIONS + [source, destination.rstrip('/') + '/'])
    except CommandError as e:
        log.critical('CRIT_SYNC_FAILED', source, e)
        return False

    if completed.returncode == RSYNC_PARTIAL_VANISHED:
        log.warning('WARN_SYNC_VANISHED', source)
    elif not completed.ok:
        log.critical('CRIT_SYNC_FAILED', source, completed.error_text())
        return False

    files, size = parse_rsync_stats(completed.stdout)
    result.add_files(files, size)
    log.info('INFO_SYNC_FINISHED', source, int((clock() - started) * 1000), files, size)
    return True


class SyncItem(BackupItem):
    """Synchronizes directories into ``<depot>/<destination or name>``."""

    type_tag = ItemType.SYNC.value

    def sources(self) -> Optional[List[str]]:
        if self.option('directories'):
            return self.checked_directories()

        source = str(self.option('source', '')).rstrip('/') or '/'
        if not os.path.isdir(source):
            self.log.critical('CRIT_DIR_NOT_EXISTS', source)
            return None
        return [source]

    def backup(self, depot_dir: str) -> None:
        sources = self.sources()
        if sources is None:
            return

        destination = os.path.join(depot_dir, self.option('destination') or self.name)
        for source in sources:
            if not sync_directory(source, destination, self.log, self.result,
                                  self.context.runner, self.context.clock,
                                  rsync=self.option('rsync', 'rsync')):
                return

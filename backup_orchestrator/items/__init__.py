"""Backup item implementations."""

from .base import BackupItem, ItemContext
from .database import DatabaseDumpItem
from .factory import ITEM_TYPES, create_item, is_known_type, normalize_type
from .mailbox import MailboxDumpItem
from .sync import SyncItem, parse_rsync_stats, sync_directory

__all__ = [
    'BackupItem',
    'ItemContext',
    'DatabaseDumpItem',
    'MailboxDumpItem',
    'SyncItem',
    'ITEM_TYPES',
    'create_item',
    'is_known_type',
    'normalize_type',
    'parse_rsync_stats',
    'sync_directory',
]

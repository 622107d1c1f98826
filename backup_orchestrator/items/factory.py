"""Selection of the backup item implementation by type tag."""

from typing import Dict, Type

from .base import BackupItem, ItemContext
from .database import DatabaseDumpItem
from .mailbox import MailboxDumpItem
from .sync import SyncItem
from ..core.models import BackupItemSpec

ITEM_TYPES: Dict[str, Type[BackupItem]] = {
    DatabaseDumpItem.type_tag: DatabaseDumpItem,
    MailboxDumpItem.type_tag: MailboxDumpItem,
    SyncItem.type_tag: SyncItem,
}


def normalize_type(type_tag) -> str:
    return str(type_tag or '').strip().lower()


def is_known_type(type_tag) -> bool:
    return normalize_type(type_tag) in ITEM_TYPES


def create_item(spec: BackupItemSpec, context: ItemContext) -> BackupItem:
    """
    Factory function to create the backup item handler for a spec.

    Args:
        spec: Item configuration
        context: Collaborators shared by the run

    Returns:
        DatabaseDumpItem, MailboxDumpItem or SyncItem instance

    Raises:
        ValueError: If the type tag is unknown
    """
    item_class = ITEM_TYPES.get(normalize_type(spec.type))
    if item_class is None:
        raise ValueError(f"Invalid backup item type: {spec.type}")
    return item_class(spec, context)

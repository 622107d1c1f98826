"""Configuration validation for backup orchestrator."""

from typing import Any, Dict, List

COMPRESSION_FORMATS = ['xz', 'gz', 'bz2']


class ConfigValidator:
    """Validates backup orchestrator configuration."""

    REQUIRED_SECTIONS = ['global', 'items']
    REQUIRED_GLOBAL_FIELDS = ['depot']

    def validate(self, config: Dict[str, Any]) -> None:
        """Validate configuration data.

        Args:
            config: Configuration dictionary to validate.

        Raises:
            ValueError: If configuration is invalid.
        """
        self._validate_structure(config)
        self._validate_global(config['global'])
        self._validate_items(config['items'])

    def _validate_structure(self, config: Dict[str, Any]) -> None:
        """Validate basic configuration structure.

        Args:
            config: Configuration dictionary.

        Raises:
            ValueError: If required sections are missing.
        """
        if not isinstance(config, dict):
            raise ValueError("Configuration does not contain an object as root")

        missing_sections = [section for section in self.REQUIRED_SECTIONS if section not in config]
        if missing_sections:
            raise ValueError(f"Missing required configuration sections: {missing_sections}")

    def _validate_global(self, global_config: Dict[str, Any]) -> None:
        """Validate the global section.

        Args:
            global_config: Global configuration dictionary.

        Raises:
            ValueError: If the global section is invalid.
        """
        if not isinstance(global_config, dict):
            raise ValueError("Global configuration must be a dictionary")

        missing_fields = [f for f in self.REQUIRED_GLOBAL_FIELDS if not global_config.get(f)]
        if missing_fields:
            raise ValueError(f"Global configuration missing required fields: {missing_fields}")

        compression = global_config.get('compression', 'xz')
        if compression not in COMPRESSION_FORMATS:
            raise ValueError(
                f"Invalid compression format: {compression}. "
                f"Valid options: {COMPRESSION_FORMATS}"
            )

        ledger = global_config.get('ledger', 'sha256sums.txt')
        if not ledger or '/' in str(ledger):
            raise ValueError(f"Ledger must be a plain file name: {ledger}")

        owner = global_config.get('owner')
        if owner is not None:
            if not isinstance(owner, str):
                raise ValueError(f"Owner must be a string: {owner}")
            user, _, group = owner.partition(':')
            if owner and not user and not group:
                raise ValueError(f"Owner must name a user or a group: {owner}")

        if 'maintenance' in global_config and global_config['maintenance'] is not None:
            self._validate_maintenance(global_config['maintenance'])

    def _validate_maintenance(self, maintenance: Any) -> None:
        if isinstance(maintenance, str):
            maintenance = {'unit': maintenance}
        if not isinstance(maintenance, dict) or not maintenance.get('unit'):
            raise ValueError("Maintenance configuration must name a unit")

        for key in ('stop_timeout', 'poll_interval'):
            if key in maintenance:
                try:
                    value = float(maintenance[key])
                except (ValueError, TypeError):
                    raise ValueError(f"Maintenance {key} must be a number: {maintenance[key]}")
                if value < 0:
                    raise ValueError(f"Maintenance {key} can not be negative: {value}")

    def _validate_items(self, items: List[Dict[str, Any]]) -> None:
        """Validate backup item configurations.

        Unknown item types are accepted here; they are dropped with a
        warning when the run selects its items.

        Args:
            items: List of backup item configurations.

        Raises:
            ValueError: If backup items are invalid.
        """
        if not isinstance(items, list):
            raise ValueError("Backup items must be a list")

        for i, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValueError(f"Backup item {i} must be a dictionary")

            if not item.get('type'):
                raise ValueError(f"Backup item {i} missing required field: type")

            item_type = str(item['type']).strip().lower()
            if item_type == 'database':
                self._validate_database(i, item)
            elif item_type == 'sync':
                self._validate_sync(i, item)
            elif item_type == 'mailbox':
                self._validate_directories(i, item)

    def _validate_database(self, index: int, item: Dict[str, Any]) -> None:
        databases = item.get('databases')
        if databases is None:
            if not item.get('database') and not item.get('name'):
                raise ValueError(f"Database item {index} needs a database name")
            return

        if not isinstance(databases, list) or not databases:
            raise ValueError(f"Database item {index} databases must be a non-empty list")

        for j, database in enumerate(databases):
            if isinstance(database, str) and database:
                continue
            if not isinstance(database, dict) or not database.get('name'):
                raise ValueError(f"Database item {index} entry {j} missing required field: name")

    def _validate_sync(self, index: int, item: Dict[str, Any]) -> None:
        if not item.get('directories') and not item.get('source'):
            raise ValueError(f"Sync item {index} needs directories or a source")
        self._validate_directories(index, item)

    def _validate_directories(self, index: int, item: Dict[str, Any]) -> None:
        directories = item.get('directories')
        if directories is not None and not isinstance(directories, list):
            raise ValueError(f"Backup item {index} directories must be a list")

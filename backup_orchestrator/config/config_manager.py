"""Configuration management for the backup orchestrator."""

import json
import os
from typing import Any, Dict, List, Optional

import yaml

from .config_validator import ConfigValidator
from ..core.models import BackupConfig, BackupItemSpec, MaintenanceSettings

YAML_EXTENSIONS = ('.yaml', '.yml')


class ConfigManager:
    """Manages configuration loading and validation for backup runs."""

    DEFAULT_CONFIG_LOCATIONS = [
        "config.json",
        "config.yaml",
        os.path.expanduser("~/.backup-orchestrator/config.json"),
        "/etc/backup-orchestrator/config.json",
    ]

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional path to config file. If not provided,
                        will search in default locations.
        """
        self.config_path = config_path
        self.config_file: Optional[str] = None
        self.config_data: Dict[str, Any] = {}
        self.validator = ConfigValidator()

    def load_config(self) -> BackupConfig:
        """Load configuration from file.

        Files ending in ``.yaml`` or ``.yml`` are read as YAML, everything
        else as JSON.

        Returns:
            Immutable run configuration.

        Raises:
            FileNotFoundError: If config file cannot be found.
            ValueError: If config file is invalid.
        """
        config_file = self._find_config_file()
        self.config_file = config_file

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                if config_file.lower().endswith(YAML_EXTENSIONS):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_file}: {e}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_file}: {e}")
        except Exception as e:
            raise ValueError(f"Error reading config file {config_file}: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_file} does not contain an object as root")

        self.config_data = data

        # Validate configuration
        self.validator.validate(self.config_data)

        # Set defaults
        self._set_defaults()

        return self.build_config()

    def _find_config_file(self) -> str:
        """Find configuration file in default locations.

        Returns:
            Path to configuration file.

        Raises:
            FileNotFoundError: If no config file is found.
        """
        if self.config_path:
            if os.path.exists(self.config_path):
                return self.config_path
            else:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

        for location in self.DEFAULT_CONFIG_LOCATIONS:
            if os.path.exists(location):
                return location

        raise FileNotFoundError(
            f"Configuration file not found in any of these locations:\n" +
            "\n".join(f"  - {loc}" for loc in self.DEFAULT_CONFIG_LOCATIONS)
        )

    def _set_defaults(self):
        """Set default values for optional configuration parameters."""
        defaults = {
            'compression': 'xz',
            'ledger': 'sha256sums.txt',
            'owner': None,
            'maintenance': None,
        }

        global_config = self.config_data['global']
        for key, value in defaults.items():
            if key not in global_config:
                global_config[key] = value

        maintenance = global_config['maintenance']
        if isinstance(maintenance, str):
            maintenance = global_config['maintenance'] = {'unit': maintenance}
        if maintenance:
            maintenance.setdefault('stop_timeout', 30)
            maintenance.setdefault('poll_interval', 1)
            maintenance.setdefault('abort_on_failure', False)

    def build_config(self) -> BackupConfig:
        """Turn the loaded configuration data into a :class:`BackupConfig`."""
        global_config = self.get_global_config()

        maintenance = None
        if global_config.get('maintenance'):
            settings = global_config['maintenance']
            maintenance = MaintenanceSettings(
                unit=settings['unit'],
                stop_timeout=float(settings['stop_timeout']),
                poll_interval=float(settings['poll_interval']),
                abort_on_failure=bool(settings['abort_on_failure']),
            )

        return BackupConfig(
            depot=os.path.expanduser(global_config['depot']),
            items=tuple(self._build_item(item) for item in self.get_items()),
            owner=global_config.get('owner'),
            compression=global_config['compression'],
            ledger_name=global_config['ledger'],
            maintenance=maintenance,
        )

    @staticmethod
    def _build_item(item: Dict[str, Any]) -> BackupItemSpec:
        options = {k: v for k, v in item.items() if k not in ('type', 'name', 'enabled')}
        return BackupItemSpec(
            name=str(item.get('name') or ''),
            type=str(item['type']),
            options=options,
            enabled=bool(item.get('enabled', True)),
        )

    def get_global_config(self) -> Dict[str, Any]:
        """Get global configuration.

        Returns:
            Global configuration dictionary.
        """
        return self.config_data.get('global', {})

    def get_items(self) -> List[Dict[str, Any]]:
        """Get all configured backup items.

        Returns:
            List of backup item configurations.
        """
        return self.config_data.get('items', [])

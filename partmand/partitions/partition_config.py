"""
Configuration management for the partition manager.

This module handles loading and validation of the YAML configuration file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .partition_errors import ConfigError
from .partition_models import PartitionConfig

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "postgres")


@dataclass
class DatabaseSettings:
    """Where partitions and the catalog live."""
    backend: str = "sqlite"
    path: str = "data/partitions.db"
    dsn: str = ""
    schema: str = "public"
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class MaintenanceSettings:
    storage_call_timeout_seconds: float = 300.0
    log_operations: bool = True
    logs_dir: str = "logs/partitions"
    write_audit_trail: bool = True


@dataclass
class SchedulerSettings:
    enabled: bool = True
    cron: str = "0 2 * * *"


@dataclass
class ManagerSettings:
    """Parsed contents of the configuration file."""
    enabled: bool = True
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    maintenance: MaintenanceSettings = field(default_factory=MaintenanceSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    tables: List[PartitionConfig] = field(default_factory=list)


class PartitionConfigManager:
    """Manages partition manager configuration."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> ManagerSettings:
        """Load configuration from YAML file, writing defaults if it is missing."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to read config {self.config_path}: {e}") from e
        else:
            logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
            config_data = self._get_default_config()
            self._save_config(config_data)

        return self._parse_config(config_data)

    def _parse_config(self, config_data: Dict[str, Any]) -> ManagerSettings:
        """Parse configuration data into ManagerSettings."""
        if not isinstance(config_data, dict):
            raise ConfigError(f"Config {self.config_path} must be a mapping")

        global_data = self._section(config_data, 'global')
        database_data = self._section(config_data, 'database')
        maintenance_data = self._section(config_data, 'maintenance')
        scheduler_data = self._section(config_data, 'scheduler')

        database = DatabaseSettings(
            backend=database_data.get('backend', 'sqlite'),
            path=str(database_data.get('path', 'data/partitions.db')),
            dsn=database_data.get('dsn') or '',
            schema=database_data.get('schema', 'public'),
            pool_min_size=database_data.get('pool_min_size', 1),
            pool_max_size=database_data.get('pool_max_size', 5),
        )
        if database.backend not in BACKENDS:
            raise ConfigError(f"Unknown database backend {database.backend!r}, expected one of {BACKENDS}")
        if database.backend == 'postgres' and not database.dsn:
            raise ConfigError("database.dsn is required for the postgres backend")

        maintenance = MaintenanceSettings(
            storage_call_timeout_seconds=maintenance_data.get('storage_call_timeout_seconds', 300.0),
            log_operations=maintenance_data.get('log_operations', True),
            logs_dir=str(maintenance_data.get('logs_dir', 'logs/partitions')),
            write_audit_trail=maintenance_data.get('write_audit_trail', True),
        )
        timeout = maintenance.storage_call_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(f"maintenance.storage_call_timeout_seconds must be positive, got {timeout!r}")

        scheduler = SchedulerSettings(
            enabled=scheduler_data.get('enabled', True),
            cron=str(scheduler_data.get('cron', '0 2 * * *')),
        )

        tables = []
        for table_name, table_data in self._section(config_data, 'tables').items():
            table_data = table_data or {}
            if not isinstance(table_data, dict):
                raise ConfigError(f"Settings for table {table_name} must be a mapping")
            tables.append(PartitionConfig(
                table_name=table_name,
                retention_months=table_data.get('retention_months', 12),
                future_partitions=table_data.get('future_partitions', 6),
                is_enabled=bool(table_data.get('enabled', True)),
            ).validate())

        return ManagerSettings(
            enabled=bool(global_data.get('enabled', True)),
            database=database,
            maintenance=maintenance,
            scheduler=scheduler,
            tables=tables,
        )

    def _section(self, config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = config_data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Config section {name!r} must be a mapping")
        return section

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            'global': {
                'enabled': True
            },
            'database': {
                'backend': 'sqlite',
                'path': 'data/partitions.db',
                'dsn': '',
                'schema': 'public',
                'pool_min_size': 1,
                'pool_max_size': 5
            },
            'maintenance': {
                'storage_call_timeout_seconds': 300,
                'log_operations': True,
                'logs_dir': 'logs/partitions',
                'write_audit_trail': True
            },
            'scheduler': {
                'enabled': True,
                'cron': '0 2 * * *'
            },
            'tables': {
                'events': {
                    'retention_months': 12,
                    'future_partitions': 6,
                    'enabled': True
                },
                'goal_completions': {
                    'retention_months': 12,
                    'future_partitions': 6,
                    'enabled': True
                }
            }
        }

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

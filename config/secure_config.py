#!/usr/bin/env python3
"""
Configuration Manager for pg2mssql
Handles environment variables, connection URLs and run settings centrally
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PG2MSSQL_"
PROFILES = ("dev", "prod")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_URL_PASSWORD = re.compile(r'(://[^:/@]+:)[^@]+(@)')


def mask_url(url: Optional[str]) -> Optional[str]:
    """Replace the password part of a connection URL with ***"""
    if not url:
        return url
    return _URL_PASSWORD.sub(r'\1***\2', url)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got '{raw}'")


@dataclass
class MigrationConfig:
    """Migration run settings"""

    # Connection URLs (loaded from environment)
    source_url: str = None
    destination_url: str = None

    # Planning / movement
    namespace_suffix: str = "_new"
    batch_size: int = 1000
    bulk_timeout: int = 300
    workers: int = 1
    check_constraints: bool = False

    # Paths
    base_dir: Path = None
    report_dir: Path = None

    # Runtime settings
    log_level: str = "INFO"
    profile: str = "dev"  # dev, prod

    def __post_init__(self):
        """Load environment variables over the dataclass defaults"""
        self.profile = _env('PROFILE', self.profile)

        if self.base_dir is None:
            default_root = Path(__file__).parent.parent
            self.base_dir = Path(_env('HOME', str(default_root)))
        else:
            self.base_dir = Path(self.base_dir)

        report_dir = _env('REPORT_DIR')
        if report_dir:
            self.report_dir = Path(report_dir)
        elif self.report_dir is None:
            self.report_dir = self.base_dir / 'migration_report'
        else:
            self.report_dir = Path(self.report_dir)

        self.source_url = _env('SOURCE_URL', self.source_url)
        self.destination_url = _env('DESTINATION_URL', self.destination_url)

        self.namespace_suffix = _env('SUFFIX', self.namespace_suffix)
        self.batch_size = _env_int('BATCH_SIZE', self.batch_size)
        self.bulk_timeout = _env_int('BULK_TIMEOUT', self.bulk_timeout)
        self.workers = _env_int('WORKERS', self.workers)
        check = _env('CHECK_CONSTRAINTS')
        if check is not None:
            self.check_constraints = check.strip().lower() in ('1', 'true', 'yes', 'on')

        # Apply profile defaults if not overridden
        if self.profile == 'prod':
            self.log_level = _env('LOG_LEVEL', 'WARNING')
        else:
            self.log_level = _env('LOG_LEVEL', self.log_level)
        self.log_level = self.log_level.upper()

    def validate(self):
        """Raise ConfigurationError on the first invalid setting"""
        if self.profile not in PROFILES:
            raise ConfigurationError(f"Unknown profile '{self.profile}'", {'allowed': list(PROFILES)})
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level '{self.log_level}'", {'allowed': list(LOG_LEVELS)})
        if not self.namespace_suffix:
            raise ConfigurationError("Namespace suffix must not be empty")
        if self.batch_size < 1:
            raise ConfigurationError(f"Batch size must be positive, got {self.batch_size}")
        if self.bulk_timeout < 1:
            raise ConfigurationError(f"Bulk timeout must be positive, got {self.bulk_timeout}")
        if self.workers < 1:
            raise ConfigurationError(f"Workers must be at least 1, got {self.workers}")

    def validate_connections(self):
        missing = []
        if not self.source_url:
            missing.append(f'{ENV_PREFIX}SOURCE_URL')
        if not self.destination_url:
            missing.append(f'{ENV_PREFIX}DESTINATION_URL')
        if missing:
            raise ConfigurationError(
                f"Missing connection settings: {', '.join(missing)}",
                {'missing': missing}
            )

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration as dict with passwords masked (side-effect free)"""
        return {
            'source_url': mask_url(self.source_url),
            'destination_url': mask_url(self.destination_url),
            'namespace_suffix': self.namespace_suffix,
            'batch_size': self.batch_size,
            'bulk_timeout': self.bulk_timeout,
            'workers': self.workers,
            'check_constraints': self.check_constraints,
            'base_dir': str(self.base_dir),
            'report_dir': str(self.report_dir),
            'log_level': self.log_level,
            'profile': self.profile,
        }


class ConfigManager:
    """Singleton configuration manager"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[MigrationConfig] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load_config()

    def load_config(self, env_file: Optional[Path] = None):
        """Load configuration from the environment.

        Priority (highest to lowest):
        1. Environment variables (PG2MSSQL_*)
        2. .env file (loaded into os.environ before config creation)
        3. MigrationConfig dataclass defaults
        """
        if env_file is None:
            default_base = Path(__file__).parent.parent
            env_file = Path(os.environ.get(f'{ENV_PREFIX}HOME', default_base)) / '.env'
        env_file = Path(env_file)
        if env_file.exists():
            self._load_env_file(env_file)

        self._config = MigrationConfig()
        self._config.validate()

    def _load_env_file(self, env_file: Path):
        """Load environment variables from .env file.

        Only sets values for keys not already in os.environ,
        ensuring exported env vars take precedence over .env file.
        """
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        key = key.strip()
                        if key not in os.environ:
                            os.environ[key] = value.strip().strip('"').strip("'")
        except OSError as e:
            logger.warning(f"Could not load .env file {env_file}: {e}")

    @property
    def config(self) -> MigrationConfig:
        """Get the current configuration"""
        if self._config is None:
            self.load_config()
        return self._config

    @classmethod
    def reset(cls):
        """Forget the loaded configuration; the next access reloads it"""
        cls._config = None
        cls._instance = None


def get_config() -> MigrationConfig:
    """Get the global configuration instance"""
    return ConfigManager().config


if __name__ == "__main__":
    config = get_config()
    print("pg2mssql Configuration Status:")
    print("-" * 40)
    for key, value in config.get_safe_dict().items():
        print(f"{key}: {value}")

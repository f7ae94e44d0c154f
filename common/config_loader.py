"""
Unified Configuration Loader for the billing engine.

Loads configuration from YAML files under config/ and resolves secrets
from environment variables. Provides a single source of truth for all
application configuration.
"""

import os
import re
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _load_root_env():
    """Load root .env file for bootstrap secrets (database password, SMS keys)."""
    root_env = Path(__file__).parent.parent / '.env'
    if root_env.exists():
        load_dotenv(root_env)
        logger.debug(f"Loaded root .env from {root_env}")


# Load root .env on module import
_load_root_env()


def resolve_env(value: Any) -> Any:
    """Resolve ${VAR_NAME} and ${VAR_NAME:-default} references in string values."""
    if not isinstance(value, str):
        return value

    def replace(match):
        return os.environ.get(match.group(1), match.group(2) or '')

    return _ENV_PATTERN.sub(replace, value)


class ConfigSection:
    """
    Dynamic configuration section that allows dot-notation access.
    Example: config.billing.notifications.batch_size

    Keys ending in _env name an environment variable holding the real value,
    e.g. `api_key_env: SMS_API_KEY`.
    """

    def __init__(self, data: Dict[str, Any] = None):
        self._data = data or {}

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            return super().__getattribute__(name)

        if name not in self._data:
            return None

        value = self._data[name]

        # If it's a dict, wrap it in ConfigSection for nested access
        if isinstance(value, dict):
            return ConfigSection(value)

        if isinstance(value, str) and name.endswith('_env'):
            return os.environ.get(value)

        return resolve_env(value)

    def __getitem__(self, key: str) -> Any:
        return getattr(self, key)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value with optional default."""
        value = getattr(self, key)
        return value if value is not None else default

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (does not resolve environment references)."""
        return self._data.copy()

    def __repr__(self):
        return f"ConfigSection({list(self._data.keys())})"


class AppConfig:
    """
    Main application configuration.
    Each YAML file in the config directory becomes a section named after the file.
    """

    def __init__(self, config_dir: str = None):
        """
        Initialize configuration.

        Args:
            config_dir: Path to config directory containing YAML files
        """
        self._config_dir = Path(config_dir) if config_dir else self._find_config_dir()
        self._sections: Dict[str, ConfigSection] = {}

        self._load_configs()

    def _find_config_dir(self) -> Path:
        """Find config directory from BILLING_CONFIG_DIR, the project root or cwd."""
        env_dir = os.environ.get('BILLING_CONFIG_DIR')
        if env_dir:
            return Path(env_dir)

        config_path = Path(__file__).parent.parent / 'config'
        if config_path.exists():
            return config_path

        return Path.cwd() / 'config'

    def _load_configs(self):
        """Load all YAML config files."""
        if not self._config_dir.exists():
            logger.warning(f"Config directory not found: {self._config_dir}")
            return

        for yaml_file in sorted(self._config_dir.glob("*.yaml")):
            section_name = yaml_file.stem
            try:
                with open(yaml_file, 'r') as f:
                    data = yaml.safe_load(f) or {}
                self._sections[section_name] = ConfigSection(data)
                logger.debug(f"Loaded config: {section_name}")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load {yaml_file}: {e}")

    def __getattr__(self, name: str) -> ConfigSection:
        if name.startswith('_'):
            return super().__getattribute__(name)

        if name in self._sections:
            return self._sections[name]

        # Return empty section for missing configs
        return ConfigSection({})

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def reload(self):
        """Reload all configuration files."""
        self._sections.clear()
        self._load_configs()
        logger.info("Configuration reloaded")

    def get_config_files(self) -> list:
        """List all loaded config files."""
        return list(self._sections.keys())


# =============================================================================
# Singleton instance and convenience functions
# =============================================================================

_config_instance: Optional[AppConfig] = None


def get_config(config_dir: str = None) -> AppConfig:
    """
    Get or create the global config instance.

    Args:
        config_dir: Path to config directory (only used on first call)

    Returns:
        AppConfig instance
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = AppConfig(config_dir)

    return _config_instance


def reload_config():
    """Reload the global configuration."""
    global _config_instance
    if _config_instance:
        _config_instance.reload()


def get_database_url(db_name: str = 'billing') -> str:
    """
    Build database URL from config.

    DATABASE_URL in the environment wins; otherwise the named section of
    database.yaml supplies either `url` or host/port/name/username with the
    password read from the variable named by `password_env`.

    Args:
        db_name: Database section name

    Returns:
        SQLAlchemy connection URL
    """
    env_url = os.environ.get('DATABASE_URL')
    if env_url:
        return env_url

    config = get_config()
    db = getattr(config.database, db_name)

    if db is None:
        raise ValueError(f"Database config not found: {db_name}")

    if db.url:
        return db.url

    password = db.password_env
    if not password:
        raw = config.database.to_dict().get(db_name, {})
        raise ValueError(f"Database password not set in environment variable: {raw.get('password_env', 'unknown')}")

    return (
        f"postgresql+psycopg2://{db.username}:{password}"
        f"@{db.host}:{db.get('port', 5432)}/{db.name}"
        f"?sslmode={db.get('sslmode', 'prefer')}"
    )

"""
Settings Manager for the Maintenance Trigger Engine
Handles configuration loading, validation, and environment variable management
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional, List
from dataclasses import dataclass, field
import logging
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

# Get the root directory of the project
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.yaml"

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration settings"""
    type: str = "sqlite"

    # PostgreSQL settings
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_database: str = "maintenance"
    pg_username: str = "maintenance"
    pg_password: str = "maintenance"
    pg_pool_size: int = 10
    pg_max_overflow: int = 20

    # SQLite settings; ':memory:' keeps everything in process
    sqlite_path: str = "./data/maintenance.db"

    # Full URL wins over the discrete fields
    url: Optional[str] = None

    @property
    def connection_string(self) -> str:
        """Generate database connection string"""
        if self.url:
            return self.url
        if self.type == "postgresql":
            password = os.getenv("DB_PASSWORD", self.pg_password)
            return f"postgresql://{self.pg_username}:{password}@{self.pg_host}:{self.pg_port}/{self.pg_database}"
        elif self.type == "sqlite":
            return f"sqlite:///{self.sqlite_path}"
        else:
            raise ValueError(f"Unsupported database type: {self.type}")

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and ":memory:" in self.connection_string


@dataclass
class TriggerConfig:
    """Dedup windows and due-date policy for work-order generation"""
    meter_dedup_hours: float = 24.0
    condition_dedup_hours: float = 4.0
    condition_due_days_cap: int = 3
    default_overdue_days: int = 7
    default_custom_days_interval: int = 30
    approaching_threshold_percentage: float = 90.0
    upcoming_days: int = 7
    execution_history_limit: int = 50


@dataclass
class AnalyticsConfig:
    """Statistical estimator defaults"""
    zscore_threshold: float = 3.0
    iqr_multiplier: float = 1.5
    smoothing_alpha: float = 0.3
    smoothing_beta: float = 0.1
    forecast_periods: int = 30
    trend_stable_band: float = 0.01
    sensor_history_days: int = 30
    failure_history_days: int = 30
    training_history_days: int = 90
    weibull_shape: float = 2.5
    useful_life_years: float = 10.0
    replacement_cost: float = 10000.0
    auto_work_order_risk_tiers: List[str] = field(default_factory=list)


@dataclass
class SchedulerConfig:
    """Cadences for the periodic sweeps"""
    enabled: bool = True
    time_sweep_at: str = "06:00"
    overdue_sweep_at: str = "07:00"
    analytics_at: str = "02:00"
    meter_sweep_minutes: int = 60
    condition_sweep_minutes: int = 30
    poll_seconds: float = 1.0


@dataclass
class NotificationConfig:
    """Notification sink configuration"""
    enabled: bool = True
    email_enabled: bool = False
    smtp_server: str = "localhost"
    smtp_port: int = 587
    use_tls: bool = True
    sender_email: str = ""
    sender_password: str = ""
    recipients: List[str] = field(default_factory=list)

    def __post_init__(self):
        """Override with environment variables if available"""
        self.sender_email = os.getenv("EMAIL_SENDER", self.sender_email)
        self.sender_password = os.getenv("EMAIL_PASSWORD", self.sender_password)
        self.smtp_server = os.getenv("SMTP_SERVER", self.smtp_server)


class Settings:
    """
    Central configuration management class
    Singleton pattern to ensure single instance across application
    """

    _instance = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_file: Optional[Path] = None):
        """Initialize settings from configuration file"""
        if not self._initialized:
            self.config_file = Path(config_file or DEFAULT_CONFIG_FILE)
            self._config = {}
            self._load_config()
            self._override_with_env()
            self._validate_config()
            self._initialized = True

    def _load_config(self):
        """Load configuration from YAML file over the defaults"""
        self._config = self._get_default_config()
        try:
            with open(self.config_file, 'r') as f:
                loaded = yaml.safe_load(f) or {}
            self._merge(self._config, loaded)
            logger.debug(f"Configuration loaded from {self.config_file}")
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {self.config_file}, using defaults")

    @staticmethod
    def _merge(base: Dict[str, Any], override: Dict[str, Any]):
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                Settings._merge(base[key], value)
            else:
                base[key] = value

    def _get_default_config(self) -> Dict[str, Any]:
        """Return default configuration if config file not found"""
        return {
            'environment': 'development',
            'system': {
                'project_name': 'Maintenance Trigger Engine',
                'version': '1.0.0',
                'debug': False,
                'log_level': 'INFO',
                'timezone': 'UTC'
            },
            'database': {
                'type': 'sqlite',
                'sqlite': {'path': './data/maintenance.db'},
                'postgresql': {}
            },
            'triggers': {},
            'analytics': {},
            'scheduler': {},
            'notifications': {},
            'api': {
                'host': '127.0.0.1',
                'port': 5000,
                'prefix': '/api/v1'
            },
            'logging': {
                'level': 'INFO',
                'enable_console': True,
                'enable_file': False,
                'file': {'path': 'logs/maintenance_engine.log'}
            }
        }

    def _override_with_env(self):
        """Override configuration with environment variables"""
        self._config['environment'] = os.getenv('ENVIRONMENT', self._config.get('environment', 'development'))

        if 'DEBUG' in os.environ:
            self._config['system']['debug'] = os.getenv('DEBUG', 'false').lower() == 'true'

        if 'DATABASE_URL' in os.environ:
            self._config['database']['url'] = os.getenv('DATABASE_URL')

        if 'LOG_LEVEL' in os.environ:
            self._config['logging']['level'] = os.getenv('LOG_LEVEL').upper()

    def _validate_config(self):
        """Validate configuration values"""
        for key in ('meter_dedup_hours', 'condition_dedup_hours'):
            if self.get(f'triggers.{key}', 1) < 0:
                raise ValueError(f"triggers.{key} must not be negative")

        if self.get('analytics.zscore_threshold', 3.0) <= 0:
            raise ValueError("analytics.zscore_threshold must be positive")

        port = self.get('api.port', 5000)
        if port < 1 or port > 65535:
            raise ValueError("API port must be between 1 and 65535")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: settings.get('triggers.meter_dedup_hours')
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set(self, key: str, value: Any):
        """
        Set configuration value using dot notation
        Example: settings.set('scheduler.enabled', False)
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def get_database_config(self) -> DatabaseConfig:
        """Get database configuration object"""
        db_config = self.get('database', {})

        if db_config.get('type') == 'postgresql':
            pg_config = db_config.get('postgresql', {})
            return DatabaseConfig(
                type='postgresql',
                pg_host=pg_config.get('host', 'localhost'),
                pg_port=pg_config.get('port', 5432),
                pg_database=pg_config.get('database', 'maintenance'),
                pg_username=pg_config.get('username', 'maintenance'),
                pg_password=pg_config.get('password', 'maintenance'),
                pg_pool_size=pg_config.get('pool_size', 10),
                pg_max_overflow=pg_config.get('max_overflow', 20),
                url=db_config.get('url')
            )
        else:
            sqlite_config = db_config.get('sqlite', {})
            return DatabaseConfig(
                type='sqlite',
                sqlite_path=sqlite_config.get('path', './data/maintenance.db'),
                url=db_config.get('url')
            )

    def get_trigger_config(self) -> TriggerConfig:
        """Get trigger/dedup configuration object"""
        return TriggerConfig(**self._known_fields(TriggerConfig, self.get('triggers', {})))

    def get_analytics_config(self) -> AnalyticsConfig:
        """Get analytics configuration object"""
        return AnalyticsConfig(**self._known_fields(AnalyticsConfig, self.get('analytics', {})))

    def get_scheduler_config(self) -> SchedulerConfig:
        """Get scheduler cadence configuration object"""
        return SchedulerConfig(**self._known_fields(SchedulerConfig, self.get('scheduler', {})))

    def get_notification_config(self) -> NotificationConfig:
        """Get notification configuration object"""
        return NotificationConfig(**self._known_fields(NotificationConfig, self.get('notifications', {})))

    @staticmethod
    def _known_fields(config_cls, values: Dict[str, Any]) -> Dict[str, Any]:
        known = config_cls.__dataclass_fields__.keys()
        unknown = set(values) - set(known)
        if unknown:
            logger.warning(f"Ignoring unknown {config_cls.__name__} keys: {sorted(unknown)}")
        return {k: v for k, v in values.items() if k in known}

    @property
    def debug(self) -> bool:
        """Check if debug mode is enabled"""
        return self.get('system.debug', False)


# Global settings instance
settings = Settings()


"""
Olmed Gateway Configuration Management.

Handles loading, saving, and validating configuration from various sources:
- Default values
- Configuration files (TOML)
- Environment variables
- Command-line arguments
"""

from __future__ import annotations

import json
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

import tomli_w
import yaml


# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "olmed-gateway"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "olmed-gateway"

DEFAULT_ENV_PREFIX = "OLMED_GATEWAY_"
DEFAULT_BASE_URL = "https://draft-csm-connector.grupaolmed.pl"


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class OlmedConfig:
    """Connection and credential settings for the Olmed ERP API."""

    base_url: str = DEFAULT_BASE_URL
    username: str = ""
    password: str = ""

    # Requests to this domain (or its subdomains) get the shared bearer token
    auth_domain: str = "grupaolmed.pl"
    provider_key: str = "olmed"

    # Token lifecycle
    refresh_threshold_seconds: int = 300  # refresh when expiring within 5 minutes
    default_expires_in: int = 3600
    request_timeout: float = 30.0

    @property
    def login_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/erp-api/auth/login"

    @property
    def refresh_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/erp-api/auth/refresh"

    @property
    def logout_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/erp-api/auth/logout"

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class SchedulerConfig:
    """Configuration for the job scheduler."""

    # Scheduler settings
    enabled: bool = True
    check_interval: int = 10  # seconds between ticks
    token_refresh_interval: int = 2700  # proactive refresh every 45 minutes

    # Startup behaviour
    login_on_startup: bool = True
    auto_load_sync_jobs: bool = True

    # Execution
    max_history: int = 1000


@dataclass
class SyncConfig:
    """Locations of the product/order synchronization job definitions."""

    product_config_file: Optional[Path] = None
    order_config_file: Optional[Path] = None
    cache_ttl: int = 300  # seconds


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None

    # JSON-lines event logs (job events, executions, scheduler events)
    event_log_dir: Optional[Path] = None
    debug_events: bool = False


@dataclass
class GatewayConfig:
    """Main configuration container for Olmed Gateway."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    olmed: OlmedConfig = field(default_factory=OlmedConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        """Initialize derived paths."""
        self.config_dir = Path(self.config_dir)
        self.data_dir = Path(self.data_dir)
        self.resolve_paths()

    def resolve_paths(self) -> None:
        """Derive unset file locations from data_dir."""
        if self.sync.product_config_file is None:
            self.sync.product_config_file = self.data_dir / "product-sync-config.json"
        if self.sync.order_config_file is None:
            self.sync.order_config_file = self.data_dir / "order-sync-config.json"
        if self.logging.event_log_dir is None:
            self.logging.event_log_dir = self.data_dir / "logs" / "cronjobs"

    @property
    def pid_file(self) -> Path:
        return self.data_dir / "olmed-gateway.pid"


_PATH_FIELDS = {"file", "event_log_dir", "product_config_file", "order_config_file"}


def _apply_section(section_obj: Any, values: dict[str, Any]) -> None:
    for key, value in values.items():
        if not hasattr(section_obj, key):
            continue
        if key in _PATH_FIELDS:
            value = Path(value) if value else None
        setattr(section_obj, key, value)


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> GatewayConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/olmed-gateway/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = GatewayConfig()
    # Derived paths are recomputed once data_dir is final
    config.sync.product_config_file = None
    config.sync.order_config_file = None
    config.logging.event_log_dir = None

    # Determine config file path
    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    config = _load_from_env(config, env_prefix)
    config.resolve_paths()

    return config


def _load_from_file(path: Path, config: GatewayConfig) -> GatewayConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Warning: Failed to load config from {path}: {e}")
        return config

    for section in ("olmed", "scheduler", "sync", "logging"):
        if isinstance(data.get(section), dict):
            _apply_section(getattr(config, section), data[section])

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])

    return config


def _load_from_env(config: GatewayConfig, prefix: str) -> GatewayConfig:
    """Load configuration from environment variables."""

    # Olmed connection
    if env_val := os.environ.get(f"{prefix}BASE_URL"):
        config.olmed.base_url = env_val
    if env_val := os.environ.get(f"{prefix}USERNAME"):
        config.olmed.username = env_val
    if env_val := os.environ.get(f"{prefix}PASSWORD"):
        config.olmed.password = env_val
    if env_val := os.environ.get(f"{prefix}AUTH_DOMAIN"):
        config.olmed.auth_domain = env_val
    if env_val := os.environ.get(f"{prefix}REQUEST_TIMEOUT"):
        config.olmed.request_timeout = float(env_val)

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in ("true", "1", "yes")
    if env_val := os.environ.get(f"{prefix}CHECK_INTERVAL"):
        config.scheduler.check_interval = int(env_val)
    if env_val := os.environ.get(f"{prefix}TOKEN_REFRESH_INTERVAL"):
        config.scheduler.token_refresh_interval = int(env_val)
    if env_val := os.environ.get(f"{prefix}LOGIN_ON_STARTUP"):
        config.scheduler.login_on_startup = env_val.lower() in ("true", "1", "yes")

    # Sync job definitions
    if env_val := os.environ.get(f"{prefix}PRODUCT_SYNC_CONFIG"):
        config.sync.product_config_file = Path(env_val)
    if env_val := os.environ.get(f"{prefix}ORDER_SYNC_CONFIG"):
        config.sync.order_config_file = Path(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()
    if env_val := os.environ.get(f"{prefix}EVENT_LOG_DIR"):
        config.logging.event_log_dir = Path(env_val)

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)

    return config


def _to_toml_value(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    return value


def save_config(config: GatewayConfig, path: Optional[Path] = None) -> None:
    """
    Save configuration to a TOML file.

    Unset optional values are omitted, since TOML has no null.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    path.parent.mkdir(parents=True, exist_ok=True)

    data = _config_to_dict(config, mask_secrets=False)
    document = {
        key: value if not isinstance(value, dict) else {
            k: _to_toml_value(v) for k, v in value.items() if v is not None
        }
        for key, value in data.items()
        if value is not None
    }

    with open(path, "wb") as f:
        tomli_w.dump(document, f)


def ensure_directories(config: GatewayConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    if config.logging.event_log_dir:
        config.logging.event_log_dir.mkdir(parents=True, exist_ok=True)


def get_default_config() -> GatewayConfig:
    """Get the default configuration."""
    return GatewayConfig()


# Global configuration instance (lazy-loaded)
_global_config: Optional[GatewayConfig] = None


def get_config() -> GatewayConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: GatewayConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def set_config_value(section: str, key: str, value: str, config_path: Optional[Path] = None) -> None:
    """
    Set a single configuration value and persist to file.

    Args:
        section: Configuration section (e.g., 'olmed', 'scheduler', 'sync')
        key: Configuration key within the section
        value: Value to set (converted to the type of the current value)
        config_path: Path to config file (default: DEFAULT_CONFIG_DIR / config.toml)

    Raises:
        ValueError: If the section or key is unknown
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    config = load_config(config_path)

    section_obj = getattr(config, section, None)
    if section_obj is None or not hasattr(section_obj, "__dataclass_fields__"):
        raise ValueError(f"Unknown configuration section: {section}")

    if not hasattr(section_obj, key):
        raise ValueError(f"Unknown configuration key: {section}.{key}")

    current_value = getattr(section_obj, key)

    # Convert value to the type of the current value
    if isinstance(current_value, bool):
        converted_value: Any = value.lower() in ("true", "1", "yes", "on")
    elif isinstance(current_value, int):
        converted_value = int(value)
    elif isinstance(current_value, float):
        converted_value = float(value)
    elif isinstance(current_value, Path) or key in _PATH_FIELDS:
        converted_value = Path(value)
    else:
        converted_value = value

    setattr(section_obj, key, converted_value)
    save_config(config, config_path)


def _validate_url(url: str) -> bool:
    """Validate a URL format."""
    url_pattern = r"^https?://[^\s/$.?#].[^\s]*$"
    return bool(re.match(url_pattern, url))


def validate_config(config: Optional[GatewayConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    # Olmed connection
    if not _validate_url(config.olmed.base_url):
        errors.append(ValidationError(
            field="olmed.base_url",
            message=f"Invalid URL format: {config.olmed.base_url}",
            severity="error"
        ))

    if not config.olmed.has_credentials:
        errors.append(ValidationError(
            field="olmed.username",
            message="Olmed credentials not set. Jobs using shared auth will be sent without a token.",
            severity="warning"
        ))

    if config.olmed.refresh_threshold_seconds < 0:
        errors.append(ValidationError(
            field="olmed.refresh_threshold_seconds",
            message="Refresh threshold must not be negative.",
            severity="error"
        ))

    if config.olmed.default_expires_in <= 0:
        errors.append(ValidationError(
            field="olmed.default_expires_in",
            message="Default token lifetime must be positive.",
            severity="error"
        ))

    # Scheduler validation
    if config.scheduler.check_interval <= 0:
        errors.append(ValidationError(
            field="scheduler.check_interval",
            message=f"Check interval must be positive, got {config.scheduler.check_interval}",
            severity="error"
        ))

    if config.scheduler.token_refresh_interval <= 0:
        errors.append(ValidationError(
            field="scheduler.token_refresh_interval",
            message="Token refresh interval must be positive.",
            severity="error"
        ))
    elif config.scheduler.token_refresh_interval >= config.olmed.default_expires_in:
        errors.append(ValidationError(
            field="scheduler.token_refresh_interval",
            message="Token refresh interval is not shorter than the token lifetime.",
            severity="warning"
        ))

    if config.sync.cache_ttl < 0:
        errors.append(ValidationError(
            field="sync.cache_ttl",
            message="Cache TTL must not be negative.",
            severity="error"
        ))

    # Path validation
    if not config.config_dir.exists():
        errors.append(ValidationError(
            field="config_dir",
            message=f"Config directory does not exist: {config.config_dir}",
            severity="warning"
        ))

    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    try:
        if config.data_dir.exists():
            test_file = config.data_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
    except (PermissionError, OSError):
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory is not writable: {config.data_dir}",
            severity="error"
        ))

    return errors


def _config_to_dict(config: GatewayConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert
        mask_secrets: If True, mask sensitive values like passwords

    Returns:
        Dictionary representation of config
    """
    def mask_value(key: str, value: Any) -> Any:
        """Mask sensitive values."""
        if not mask_secrets:
            return value
        sensitive_keys = {"password", "secret", "token"}
        if value and any(sk in key.lower() for sk in sensitive_keys):
            return "****"
        return value

    def path_str(value: Optional[Path]) -> Optional[str]:
        return str(value) if value else None

    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "olmed": {
            "base_url": config.olmed.base_url,
            "username": config.olmed.username,
            "password": mask_value("password", config.olmed.password),
            "auth_domain": config.olmed.auth_domain,
            "provider_key": config.olmed.provider_key,
            "refresh_threshold_seconds": config.olmed.refresh_threshold_seconds,
            "default_expires_in": config.olmed.default_expires_in,
            "request_timeout": config.olmed.request_timeout,
        },
        "scheduler": {
            "enabled": config.scheduler.enabled,
            "check_interval": config.scheduler.check_interval,
            "token_refresh_interval": config.scheduler.token_refresh_interval,
            "login_on_startup": config.scheduler.login_on_startup,
            "auto_load_sync_jobs": config.scheduler.auto_load_sync_jobs,
            "max_history": config.scheduler.max_history,
        },
        "sync": {
            "product_config_file": path_str(config.sync.product_config_file),
            "order_config_file": path_str(config.sync.order_config_file),
            "cache_ttl": config.sync.cache_ttl,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": path_str(config.logging.file),
            "event_log_dir": path_str(config.logging.event_log_dir),
            "debug_events": config.logging.debug_events,
        },
    }


def export_config_yaml(config: GatewayConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as YAML string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        YAML string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: GatewayConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as JSON string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        JSON string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return json.dumps(config_dict, indent=2)

"""Configuration loader.

Loads config.yaml, validates it against the Pydantic schema and caches the
result for the life of the process.

Usage:
    from inboxmap.config import get_config

    config = get_config()
    print(config.database.path)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from inboxmap.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from inboxmap.core.errors import ConfigLoadError, ConfigValidationError
from inboxmap.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV_VAR = "INBOXMAP_CONFIG_PATH"

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into one line per field."""
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        if err["type"] == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        else:
            messages.append(f"  - Field '{field_path}': {err['msg']}")
    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML mapping.

    Raises:
        ConfigLoadError: If the file is missing, unparsable or not a mapping
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate parsed YAML against AppConfig.

    Raises:
        ConfigValidationError: If validation fails or the schema version is too new
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{_format_validation_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Upgrade inboxmap or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from disk (uncached).

    Args:
        path: Config file. Defaults to INBOXMAP_CONFIG_PATH or config/config.yaml.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()
    logger.debug("Loading configuration", path=str(config_path))

    config = _validate_config(_load_yaml(config_path), config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        database=config.database.path,
        max_retries=config.providers.max_retries,
    )
    return config


def get_config() -> AppConfig:
    """Get the process-wide configuration, loading it on first use.

    Thread-safe: the first load happens under _config_lock.
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config(_get_config_path())
        return _current_config


def set_config(config: AppConfig) -> None:
    """Install an already-built configuration (CLI --config, tests)."""
    global _current_config
    with _config_lock:
        _current_config = config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without installing it.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - database: {config.database.path}\n"
        f"  - transport retries: {config.providers.max_retries}\n"
        f"  - provisioning: up to {config.provisioning.max_items} items, "
        f"{config.provisioning.max_concurrency} worker(s)\n"
        f"  - partial match threshold: {config.suggestion.partial_threshold}",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None

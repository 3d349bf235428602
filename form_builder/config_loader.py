"""
Configuration for the form schema builder.

config.yaml is layered over the built-in defaults and the result is checked
against the settings models below. Any problem with the file (missing,
unparsable, wrong shape or out-of-range values) is logged and the builder
runs on defaults instead.
"""

import logging
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")

LOGGING_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}

_DEFAULTS: Dict[str, Any] = {
    'app': {
        'name': 'Form Schema Builder',
        'version': '1.0.0',
        'debug': False
    },
    'builder': {
        'max_history_size': 50,
        'drag_activation_distance': 8,
        'blueprint_catalog': None,
        'schema_file': 'schemas/form_schema.yaml',
        'strict_import': False
    },
    'ui': {
        'page_title': 'Form Schema Builder',
        'sidebar_title': 'Field Palette',
        'show_json_preview': True
    },
    'logging': {
        'level': 'INFO'
    }
}


class _Section(BaseModel):
    model_config = ConfigDict(extra='allow')


class AppSettings(_Section):
    name: StrictStr
    version: Any = Field(...)


class BuilderSettings(_Section):
    max_history_size: StrictInt = Field(gt=0)
    drag_activation_distance: Union[StrictInt, float] = 8
    blueprint_catalog: Optional[StrictStr] = None

    @field_validator('drag_activation_distance', mode='before')
    @classmethod
    def _non_negative_distance(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError("drag_activation_distance must be a non-negative number")
        return value


class LoggingSettings(_Section):
    level: StrictStr = 'INFO'

    @field_validator('level')
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in LOGGING_LEVELS:
            raise ValueError(f"unknown logging level '{value}'")
        return value


class BuilderConfig(_Section):
    """Shape every loaded configuration must satisfy."""

    app: AppSettings
    builder: BuilderSettings
    ui: _Section
    logging: LoggingSettings


def get_default_config() -> Dict[str, Any]:
    """Return a fresh copy of the built-in configuration."""
    return deepcopy(_DEFAULTS)


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Layer ``update_dict`` over ``base_dict`` without touching either.

    Nested mappings are merged key by key; any other value in ``update_dict``
    replaces the base value outright.
    """
    merged = deepcopy(base_dict)
    for key, value in update_dict.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Check a merged configuration against the settings models.

    Args:
        config: Configuration dictionary to check

    Returns:
        True when every section is present and every builder setting is usable
    """
    try:
        BuilderConfig.model_validate(config)
    except ValidationError as e:
        for problem in e.errors():
            location = '.'.join(str(part) for part in problem['loc'])
            logger.warning(f"Invalid configuration at {location}: {problem['msg']}")
        return False
    return True


def _read_user_config(config_path: Path) -> Optional[Dict[str, Any]]:
    """Read the YAML overrides, or None when the file cannot supply any."""
    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        return None

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Could not parse {config_path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read {config_path}: {e}")
        return None

    if user_config is None:
        logger.warning(f"Configuration file is empty: {config_path}")
        return None
    if not isinstance(user_config, dict):
        logger.error(f"Configuration root in {config_path} must be a mapping, got {type(user_config).__name__}")
        return None
    return user_config


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load the builder configuration.

    Args:
        config_path: YAML file with overrides (defaults to config.yaml)

    Returns:
        The merged configuration, or the defaults when the file is unusable
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    user_config = _read_user_config(config_path)
    if user_config is None:
        logger.info("Running with default configuration")
        return get_default_config()

    config = deep_merge(_DEFAULTS, user_config)
    if not validate_config(config):
        logger.error(f"Ignoring invalid configuration in {config_path}; running with defaults")
        return get_default_config()

    logger.info(f"Loaded configuration from {config_path}")
    return config


def get_logging_level(level_str: Optional[str]) -> int:
    """Map a level name to its logging constant, INFO when unknown."""
    if not isinstance(level_str, str):
        return logging.INFO
    return LOGGING_LEVELS.get(level_str.upper(), logging.INFO)


def get_config_value(config: Dict[str, Any], section: str, key: str, default: Any = None) -> Any:
    """Read one setting, returning ``default`` when the section or key is missing."""
    values = config.get(section)
    if not isinstance(values, dict):
        return default
    value = values.get(key)
    return default if value is None else value


def get_config_summary(config: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the settings shown in the sidebar."""
    def value(section: str, key: str, default: Any) -> Any:
        return get_config_value(config, section, key, default)

    return {
        'app_name': value('app', 'name', 'Unknown'),
        'app_version': value('app', 'version', 'Unknown'),
        'debug_mode': value('app', 'debug', False),
        'max_history_size': value('builder', 'max_history_size', 50),
        'drag_activation_distance': value('builder', 'drag_activation_distance', 8),
        'blueprint_catalog': value('builder', 'blueprint_catalog', 'built-in'),
        'schema_file': value('builder', 'schema_file', 'Unknown'),
        'strict_import': value('builder', 'strict_import', False),
        'logging_level': value('logging', 'level', 'INFO')
    }

"""
Configuration loading utilities for the form engine.

Loads config.yaml, deep-merges it over built-in defaults and exposes the
settings consumed by sessions and schedulers. A broken or missing file never
raises; the defaults are used instead.
"""

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE = Path("config.yaml")

_config_cache: Optional[Dict[str, Any]] = None


def deep_merge(base_dict: Dict[str, Any], update_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries, with update_dict taking precedence.

    Args:
        base_dict: Base dictionary (defaults)
        update_dict: Dictionary to merge in (user config)

    Returns:
        Merged dictionary
    """
    result = deepcopy(base_dict)
    for key, value in update_dict.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = deepcopy(value)
    return result


def get_default_config() -> Dict[str, Any]:
    return {
        'app': {
            'name': 'Form Engine Console',
            'version': '1.0.0',
        },
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        },
        'forms': {
            'auto_execute_debounce_ms': 1000,
            'auto_execute_loading_ms': 1000,
            'name_max_length': 120,
            'default_language': 'en',
            'storage_dir': 'forms_data',
        },
        'languages': [
            {'code': 'en', 'name': 'English', 'nativeName': 'English'},
        ],
        'uploads': {
            'media_upload_url': '/media/upload',
        },
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load the configuration file merged over the defaults.

    Args:
        config_path: Optional path to config file (defaults to config.yaml)

    Returns:
        Complete configuration dictionary
    """
    if config_path is None:
        config_path = CONFIG_FILE
    config_path = Path(config_path)

    default_config = get_default_config()

    if not config_path.exists():
        logger.warning(f"Configuration file not found: {config_path}")
        logger.info("Using default configuration")
        return default_config

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = yaml.safe_load(f)

        if user_config is None:
            logger.warning(f"Configuration file is empty: {config_path}")
            return default_config

        if not isinstance(user_config, dict):
            logger.error(f"Configuration file is not a valid dictionary: {config_path}")
            logger.info("Using default configuration")
            return default_config

        config = deep_merge(default_config, user_config)
        logger.info(f"Successfully loaded configuration from {config_path}")
        return config

    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config

    except (IOError, OSError) as e:
        logger.error(f"Failed to read configuration file {config_path}: {e}")
        logger.info("Using default configuration")
        return default_config


def get_config() -> Dict[str, Any]:
    """Cached configuration of the default config file."""
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
    return _config_cache


def reload_config() -> Dict[str, Any]:
    global _config_cache
    _config_cache = None
    return get_config()


def get_config_value(section: str, key: str, default: Any = None) -> Any:
    """
    Get a specific configuration value.

    Args:
        section: Configuration section (e.g. 'forms', 'logging')
        key: Configuration key
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    section_values = get_config().get(section)
    if not isinstance(section_values, dict):
        return default
    return section_values.get(key, default)


def get_logging_level(level_str: Any) -> int:
    """Map string logging level to logging constant."""
    level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }
    return level_map.get(str(level_str).upper(), logging.INFO)


def configure_logging(config: Optional[Dict[str, Any]] = None) -> int:
    """
    Configure root logging from the ``logging`` config section.

    Returns:
        The logging level that was applied
    """
    config = config if config is not None else get_config()
    logging_config = config.get('logging') or {}
    level_str = logging_config.get('level', 'INFO')
    level = get_logging_level(level_str)
    log_format = logging_config.get('format') or get_default_config()['logging']['format']

    logging.basicConfig(level=level, format=log_format)
    logger.info(f"Logging configured to level: {level_str}")
    return level


@dataclass
class FormsSettings:
    """Typed view of the ``forms`` section plus the language catalogue."""
    auto_execute_debounce_ms: int = 1000
    auto_execute_loading_ms: int = 1000
    name_max_length: int = 120
    default_language: str = 'en'
    storage_dir: str = 'forms_data'
    media_upload_url: str = '/media/upload'
    languages: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'FormsSettings':
        config = config if config is not None else get_config()
        defaults = get_default_config()
        forms = deep_merge(defaults['forms'], config.get('forms') or {})
        uploads = deep_merge(defaults['uploads'], config.get('uploads') or {})
        languages = config.get('languages')
        if not isinstance(languages, list):
            languages = defaults['languages']

        return cls(
            auto_execute_debounce_ms=int(forms['auto_execute_debounce_ms']),
            auto_execute_loading_ms=int(forms['auto_execute_loading_ms']),
            name_max_length=int(forms['name_max_length']),
            default_language=str(forms['default_language']),
            storage_dir=str(forms['storage_dir']),
            media_upload_url=str(uploads['media_upload_url']),
            languages=list(languages),
        )

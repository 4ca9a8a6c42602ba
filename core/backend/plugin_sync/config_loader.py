"""
Configuration Loader

Loads and validates configuration from YAML files, plus the optional
context.json carrying ownership settings for published jars.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .config import CONTEXT_FILE, LEDGER_FILE, PLUGINS_DIR, REQUESTS_FILE
from .errors import ConfigError

logger = logging.getLogger(__name__)

KNOWN_KEYS = {'paths', 'chown'}
KNOWN_PATHS = {'plugin_dir', 'ledger', 'requests'}
KNOWN_CHOWN = {'uid', 'gid'}


def get_config_paths() -> list[Path]:
    """
    Get list of config file paths to check in priority order

    Returns:
        List of paths to check (first found wins)
    """
    paths = []

    # 1. User config directory
    paths.append(Path.home() / ".config" / "plugin-sync" / "config.yaml")

    # 2. Current working directory
    paths.append(Path.cwd() / "config.yaml")

    return paths


def default_config() -> Dict[str, Any]:
    return {
        'paths': {
            'plugin_dir': str(PLUGINS_DIR),
            'ledger': str(LEDGER_FILE),
            'requests': str(REQUESTS_FILE),
        },
        'chown': None,
    }


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dict with 'paths' and 'chown'
    """
    config = default_config()

    config_files = [config_path] if config_path else get_config_paths()

    loaded_from = None
    for path in config_files:
        if path.exists():
            loaded_from = path
            break

    if not loaded_from:
        logger.info("No config file found, using defaults")
        return config

    logger.info(f"Loading configuration from: {loaded_from}")

    try:
        with open(loaded_from, 'r') as f:
            user_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config {loaded_from}: {e}") from e

    if not user_config:
        logger.warning(f"Config file {loaded_from} is empty")
        return config
    if not isinstance(user_config, dict):
        raise ConfigError(f"Config file {loaded_from} must contain a mapping")

    user_config = substitute_env_vars(user_config)

    for key in user_config:
        if key not in KNOWN_KEYS:
            logger.warning(f"Unknown key in config: {key!r}")

    if isinstance(user_config.get('paths'), dict):
        config['paths'].update(user_config['paths'])
    elif 'paths' in user_config:
        config['paths'] = user_config['paths']

    if 'chown' in user_config:
        config['chown'] = user_config['chown']

    return config


def substitute_env_vars(config: Dict) -> Dict:
    """
    Substitute environment variables in config values

    Handles patterns like:
    - ${ENV_VAR}
    - ${ENV_VAR:-default_value}

    A value that is exactly one integer after substitution becomes an int,
    so `uid: ${PLUGIN_UID:-1000}` yields 1000.
    """
    pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'

    def replacer(match):
        return os.environ.get(match.group(1), match.group(2) or "")

    def substitute_value(value):
        if isinstance(value, str):
            if not re.search(pattern, value):
                return value
            substituted = re.sub(pattern, replacer, value)
            return int(substituted) if re.fullmatch(r'-?\d+', substituted) else substituted
        elif isinstance(value, dict):
            return {k: substitute_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [substitute_value(item) for item in value]
        else:
            return value

    return substitute_value(config)


def _validate_chown(chown: Any, errors: list[str]) -> None:
    if chown is None:
        return
    if not isinstance(chown, dict):
        errors.append("'chown' must be a mapping with 'uid' and/or 'gid'")
        return
    for key in ('uid', 'gid'):
        value = chown.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            errors.append(f"'chown.{key}' must be a number or null")
    for key in chown:
        if key not in KNOWN_CHOWN:
            logger.warning(f"Unknown key in chown: {key!r}")


def validate_config(config: Dict) -> tuple[bool, list[str]]:
    """
    Validate configuration structure

    Args:
        config: Configuration dict to validate

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors = []

    paths = config.get('paths')
    if not isinstance(paths, dict):
        errors.append("'paths' must be a mapping")
    else:
        for key in KNOWN_PATHS:
            if not isinstance(paths.get(key), str) or not paths.get(key):
                errors.append(f"'paths.{key}' must be a non-empty string")
        for key in paths:
            if key not in KNOWN_PATHS:
                logger.warning(f"Unknown key in paths: {key!r}")

    _validate_chown(config.get('chown'), errors)

    is_valid = len(errors) == 0
    return is_valid, errors


def load_context(context_path: Path = CONTEXT_FILE) -> Dict[str, Any]:
    """
    Load context.json ({"chown": {"uid": 1000, "gid": null}})

    Returns:
        The context dict, or {} if the file does not exist

    Raises:
        ConfigError: if the file is unreadable JSON or has an invalid shape
    """
    if not context_path.exists():
        return {}

    try:
        with open(context_path, encoding='utf-8') as f:
            context = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid context file {context_path}: {e}") from e

    validate_context(context)
    return context


def validate_context(context: Any) -> None:
    """
    Raises:
        ConfigError: if context is not an object or chown is malformed
    """
    if not isinstance(context, dict):
        raise ConfigError("context must be an object")

    errors = []
    _validate_chown(context.get('chown'), errors)
    if errors:
        raise ConfigError("; ".join(errors))

    for key in context:
        if key != 'chown':
            logger.warning(f"Unknown key in context: {key!r}")


def resolve_chown(config: Dict, context: Optional[Dict] = None) -> Optional[Tuple[Optional[int], Optional[int]]]:
    """(uid, gid) to apply to published jars, context.json taking precedence"""
    chown = (context or {}).get('chown') or config.get('chown')
    if not chown:
        return None
    return chown.get('uid'), chown.get('gid')

"""Configuration loading.

Configuration is a flat mapping of KEY -> string, layered as:
1. config/defaults.yaml: shipped defaults
2. ~/.config/finitra/config.yaml (or $FINITRA_CONFIG): user overrides
3. SETUP_USER / SETUP_HOME / LOG_FILE environment variables

Later layers win on conflicting keys. The resulting table becomes the
Context variables used for ${VAR} substitution in list files.
"""

import os
from pathlib import Path
from typing import Optional

import yaml

# Keys that may be overridden straight from the environment (e.g. when
# re-invoked through sudo with the real user preserved)
ENV_OVERRIDES = ('SETUP_USER', 'SETUP_HOME', 'LOG_FILE')


class ConfigError(Exception):
    """Configuration error."""


def get_base_dir() -> Path:
    """Get the project directory."""
    return Path(__file__).parent.parent  # src/ -> finitra/


def get_data_dir() -> Path:
    """Directory holding the shipped declarative list files."""
    if env_path := os.environ.get('FINITRA_DATA'):
        return Path(env_path)
    return get_base_dir() / 'data'


def get_default_config_path() -> Path:
    """Shipped defaults file."""
    return get_base_dir() / 'config' / 'defaults.yaml'


def get_user_config_path(home: Optional[Path] = None) -> Path:
    """User override file.

    Resolution order:
    1. $FINITRA_CONFIG
    2. <home>/.config/finitra/config.yaml
    """
    if env_path := os.environ.get('FINITRA_CONFIG'):
        return Path(env_path)
    home = home or Path.home()
    return home / '.config' / 'finitra' / 'config.yaml'


def to_config_str(value) -> str:
    """Normalize a YAML scalar to the string form used for substitution."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file that must contain a flat mapping."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping of KEY: value")

    for key, value in data.items():
        if isinstance(value, (dict, list)):
            raise ConfigError(f"Config key {key} in {path} must be a scalar")
    return data


def load_variables(
    defaults_file: Optional[Path] = None,
    user_file: Optional[Path] = None,
    environ: Optional[dict] = None,
) -> dict[str, str]:
    """Load the layered configuration table.

    Args:
        defaults_file: Shipped defaults (default: config/defaults.yaml)
        user_file: User override file (skipped when absent)
        environ: Environment mapping (default: os.environ)

    Returns:
        Flat dict of KEY -> string value

    Raises:
        ConfigError: If the defaults file is missing or a file is malformed
    """
    defaults_file = defaults_file or get_default_config_path()
    environ = os.environ if environ is None else environ

    if not defaults_file.exists():
        raise ConfigError(f"Default config not found: {defaults_file}")

    variables = {str(k): to_config_str(v) for k, v in _parse_yaml(defaults_file).items()}

    if user_file and user_file.exists():
        overrides = _parse_yaml(user_file)
        variables.update({str(k): to_config_str(v) for k, v in overrides.items()})

    for key in ENV_OVERRIDES:
        if value := environ.get(key):
            variables[key] = value

    return variables


def is_enabled(value: Optional[str]) -> bool:
    """Interpret a config string as a boolean flag."""
    return (value or '').strip().lower() in ('true', 'yes', 'y', '1', 'on')

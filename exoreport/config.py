"""
Exchange Online report scripts - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (MS365_*, EXOREPORT_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
output: "./reports"
delimiter: ","

m365:
  tenant_id: ${MS365_TENANT_ID}  # env var substitution
  client_id: ${MS365_CLIENT_ID}
  organization: contoso.onmicrosoft.com

exchange:
  page_size: 1000
```
"""
import logging
import os
import re
import stat
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './exoreport-config.yaml',
    './exoreport-config.yml',
    '~/.exoreport/config.yaml',
    '~/.exoreport/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'output': 'EXOREPORT_OUTPUT',
    'log_level': 'EXOREPORT_LOG_LEVEL',
    'delimiter': 'EXOREPORT_DELIMITER',
    'm365.tenant_id': 'MS365_TENANT_ID',
    'm365.client_id': 'MS365_CLIENT_ID',
    'm365.organization': 'MS365_ORGANIZATION',
    'm365.certificate_path': 'MS365_CERTIFICATE_PATH',
    'exchange.page_size': 'EXOREPORT_PAGE_SIZE',
}

# argparse attribute -> config key
ARG_MAPPING = {
    'output_dir': 'output',
    'log_level': 'log_level',
    'delimiter': 'delimiter',
    'tenant_id': 'm365.tenant_id',
    'client_id': 'm365.client_id',
    'organization': 'm365.organization',
    'certificate_path': 'm365.certificate_path',
    'page_size': 'exchange.page_size',
}

INT_KEYS = ('exchange.page_size',)


# ${VAR} or ${VAR:-default}
_ENV_REFERENCE = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')


def _substitute_env_vars(value: Any) -> Any:
    """Expand environment references in every string of a loaded YAML tree."""
    if isinstance(value, dict):
        return {key: _substitute_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    if not isinstance(value, str):
        return value
    return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ''), value)


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value: Any = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Config files may hold tenant details; warn on group/world access
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path, encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None and value != '':
            _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None and value != '':
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    for arg_name, config_key in ARG_MAPPING.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            _set_nested(config, config_key, value)

    return config


def config_to_args(config: Dict[str, Any], args) -> None:
    """Apply merged config values to argparse args object."""
    for arg_name, config_key in ARG_MAPPING.items():
        value = _get_nested(config, config_key)
        if value is None:
            continue
        if config_key in INT_KEYS:
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ValueError(f"{config_key} must be a whole number, got {value!r}") from None
        setattr(args, arg_name, value)


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    merged = merge_configs(*configs)
    config_to_args(merged, args)

    return merged


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Exchange Online report scripts configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# =============================================================================
# Common Settings (apply to all reports)
# =============================================================================

# Output directory for report files and run logs
output: "./exo_reports"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Field delimiter for report files
delimiter: ","


# =============================================================================
# Tenant / App Registration
# =============================================================================
# Required API permissions (Application type):
#   - Office 365 Exchange Online: Exchange.ManageAsApp
#   - Microsoft Graph: Group.Read.All (unified_group_report.py only)
# The app also needs an Exchange role such as "View-Only Organization Management".
#
m365:
  tenant_id: ${MS365_TENANT_ID}
  client_id: ${MS365_CLIENT_ID}

  # Tenant's initial domain; routes admin API calls to the right forest
  # organization: contoso.onmicrosoft.com

  # PEM/PFX certificate registered on the app (preferred over a secret)
  # certificate_path: ~/.exoreport/app-cert.pem

  # Client secret: always use the MS365_CLIENT_SECRET env var, never this file


# =============================================================================
# Exchange admin API
# =============================================================================
exchange:
  # Records per page requested from the service
  page_size: 1000
'''

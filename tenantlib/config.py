"""
M365 Reports - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (M365R_*, MS365_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
org_name: "acme-corp"
output: "./m365_reports_output"

m365:
  tenant_id: ${MS365_TENANT_ID}  # env var substitution
  client_id: ${MS365_CLIENT_ID}

reference:
  sku_csv: ./reference/skus.csv
  service_plan_csv: ./reference/service_plans.csv

licensing:
  inactive_days: 90
  formats: [csv, xlsx]
```
"""
import os
import re
import stat
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List

import yaml

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './m365-reports.yaml',
    './m365-reports.yml',
    '~/.m365-reports/config.yaml',
    '~/.m365-reports/config.yml',
]

# Environment variable prefix
ENV_PREFIX = 'M365R_'

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'org_name': 'M365R_ORG_NAME',
    'output': 'M365R_OUTPUT',
    'log_level': 'M365R_LOG_LEVEL',
    'm365.tenant_id': 'MS365_TENANT_ID',
    'm365.client_id': 'MS365_CLIENT_ID',
    'reference.sku_csv': 'M365R_SKU_CSV',
    'reference.service_plan_csv': 'M365R_SERVICE_PLAN_CSV',
    'licensing.inactive_days': 'M365R_INACTIVE_DAYS',
    'licensing.currency': 'M365R_CURRENCY',
    'licensing.formats': 'M365R_FORMATS',
    'mail.sender': 'M365R_MAIL_SENDER',
    'mail.recipients': 'M365R_MAIL_RECIPIENTS',
}

LIST_KEYS = ('licensing.formats', 'mail.recipients')
INT_KEYS = ('licensing.inactive_days',)


def _split_list(value: str) -> List[str]:
    return [v.strip() for v in value.split(',') if v.strip()]


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    keys = key_path.split('.')
    value = data
    for key in keys:
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

    # Config may hold tenant/app ids; warn on group or world access
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping at the top level")

    if _get_nested(config, 'm365.client_secret'):
        logger.warning("m365.client_secret in config file is ignored; "
                       "set MS365_CLIENT_SECRET in the environment instead")
        config['m365'].pop('client_secret', None)

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
        value: Any = os.environ.get(env_var)
        if value is None or value == '':
            continue
        if config_key in LIST_KEYS:
            value = _split_list(value)
        elif config_key in INT_KEYS:
            try:
                value = int(value)
            except ValueError:
                logger.warning(f"Ignoring {env_var}={value!r}: not an integer")
                continue

        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


# argparse attribute -> config key
ARG_MAPPING = {
    'org_name': 'org_name',
    'output': 'output',
    'log_level': 'log_level',
    'tenant_id': 'm365.tenant_id',
    'client_id': 'm365.client_id',
    'sku_csv': 'reference.sku_csv',
    'service_plan_csv': 'reference.service_plan_csv',
    'inactive_days': 'licensing.inactive_days',
    'currency': 'licensing.currency',
    'formats': 'licensing.formats',
    'email_from': 'mail.sender',
    'email_to': 'mail.recipients',
}


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    for arg_name, config_key in ARG_MAPPING.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            # Handle comma-separated string to list conversion
            if config_key in LIST_KEYS and isinstance(value, str):
                value = _split_list(value)
            _set_nested(config, config_key, value)

    return config


def config_to_args(config: Dict[str, Any], args) -> None:
    """Apply merged config values back onto the argparse args object."""
    for arg_name, config_key in ARG_MAPPING.items():
        value = _get_nested(config, config_key)
        if value is None:
            continue
        if config_key in LIST_KEYS and isinstance(value, str):
            value = _split_list(value)
        if config_key in INT_KEYS:
            value = int(value)
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

    # 1. Environment variables (lowest priority)
    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    # 2. Config file
    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    # 3. CLI arguments (highest priority)
    configs.append(args_to_config(args))

    merged = merge_configs(*configs)
    config_to_args(merged, args)

    return merged


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# M365 Reports Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# =============================================================================
# Common Settings (apply to all reports)
# =============================================================================

# Organization name (shown in report titles)
org_name: "my-organization"

# Output directory for report files
output: "./m365_reports_output"

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO


# =============================================================================
# Microsoft 365 App Registration
# =============================================================================
# Client secret MUST be set via the MS365_CLIENT_SECRET environment variable.
#
# Required API permissions (Application type):
#   - User.Read.All            (users, license assignments)
#   - Organization.Read.All    (subscribed SKUs)
#   - Group.Read.All           (licensing group names)
#   - AuditLog.Read.All        (sign-in activity, needs Entra ID P1)
#   - UserAuthenticationMethod.Read.All (mfa_report.py)
#   - Mail.Send                (only when emailing reports)
#
m365:
  tenant_id: ${MS365_TENANT_ID}
  client_id: ${MS365_CLIENT_ID}


# =============================================================================
# Reference Data (license_report.py)
# =============================================================================
reference:
  # Columns: SkuId, SkuPartNumber, DisplayName, Price, Currency
  sku_csv: ./reference/skus.csv

  # Columns: ServicePlanId, ServicePlanDisplayName
  service_plan_csv: ./reference/service_plans.csv


# =============================================================================
# Licensing Report
# =============================================================================
licensing:
  # Accounts with no sign-in for longer than this are flagged inactive
  inactive_days: 60

  # Override the currency taken from the SKU file
  # currency: USD

  # Output formats: csv, json, html, xlsx
  formats:
    - csv
    - json
    - html
    - xlsx


# =============================================================================
# Email Delivery (optional)
# =============================================================================
mail:
  # Mailbox the report is sent from
  # sender: reports@contoso.com

  # recipients:
  #   - it-finance@contoso.com
'''

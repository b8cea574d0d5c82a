"""Custodian configuration loader module.

This module loads the [custodian] section of settings.conf, which configures
the connection to the custodial MPC signer (Fireblocks REST API).

Environment variables take precedence over the file so that credentials
can stay out of it:
    FIREBLOCKS_API_KEY, FIREBLOCKS_SECRET_KEY_PATH, FIREBLOCKS_BASE_URL,
    FIREBLOCKS_CONTRACT_TEMPLATE_ID

When neither an API key nor a secret key path is configured the service
runs its signer in simulation mode.

Example:
    [custodian]
    base_url = https://sandbox-api.fireblocks.io
    api_key = 3f2a...
    secret_key_path = /etc/assetlink/fireblocks_secret.key
    contract_template_id = b70701f4-d7b1-4795-a8ee-b09cdb5b850a
    default_vault_id = 88

Raises:
    CustodianConfigError: If values are invalid or the key file does not exist
"""
import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Union
from urllib.parse import urlparse

from .load_settings_conf import read_conf, SettingsError

logger = logging.getLogger(__name__)

SECTION = 'custodian'

DEFAULTS = {
    'base_url': 'https://sandbox-api.fireblocks.io',
    'api_key': '',
    'secret_key_path': '',
    'contract_template_id': '',
    'default_vault_id': '88',  # Gas vault used when neither operation nor asset names one
    'gas_asset_id': 'ETH_TEST5',
    'min_gas_balance': '0.001',
    'request_timeout_seconds': '30',
}

ENV_OVERRIDES = {
    'FIREBLOCKS_API_KEY': 'api_key',
    'FIREBLOCKS_SECRET_KEY_PATH': 'secret_key_path',
    'FIREBLOCKS_BASE_URL': 'base_url',
    'FIREBLOCKS_CONTRACT_TEMPLATE_ID': 'contract_template_id',
}


class ConfigValidationError:
    """Helper class to format custodian configuration errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid: List[str] = []
        self.invalid_paths: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid or self.invalid_paths)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing:
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)

        if self.invalid:
            if messages:
                messages.append("")
            messages.append("Invalid settings:")
            messages.extend(f"  - {item}" for item in self.invalid)

        if self.invalid_paths:
            if messages:
                messages.append("")
            messages.append("Invalid paths (file does not exist):")
            messages.extend(f"  - {item}" for item in self.invalid_paths)

        return "\n".join(messages)


class CustodianConfigError(Exception):
    """Raised when the custodian configuration is invalid"""
    pass


def is_configured(conf: Mapping[str, Any]) -> bool:
    """True when credentials for the real custodian are present."""
    return bool(conf.get('api_key') and conf.get('secret_key_path'))


def load_custodian_conf(
    settings_file: Union[str, Path] = "settings.conf",
    environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Load the [custodian] section with environment overrides.

    Args:
        settings_file: Path to settings.conf
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        Dictionary of custodian settings; ``simulated`` tells whether
        credentials are missing

    Raises:
        CustodianConfigError: If parsing or validation fails
    """
    environ = os.environ if environ is None else environ
    try:
        parser = read_conf(settings_file)
    except SettingsError as e:
        raise CustodianConfigError(str(e))

    conf: Dict[str, Any] = dict(DEFAULTS)
    if parser.has_section(SECTION):
        conf.update({key: parser.get(SECTION, key) for key in parser.options(SECTION)
                     if key not in parser.defaults()})
    for env_key, key in ENV_OVERRIDES.items():
        if environ.get(env_key):
            conf[key] = environ[env_key]

    errors = ConfigValidationError()

    parsed = urlparse(conf['base_url'])
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        errors.invalid.append(f"base_url: {conf['base_url']}")
    conf['base_url'] = conf['base_url'].rstrip('/')
    if conf['base_url'].endswith('/v1'):
        conf['base_url'] = conf['base_url'][:-3]

    try:
        conf['min_gas_balance'] = Decimal(str(conf['min_gas_balance']))
        if conf['min_gas_balance'] < 0:
            errors.invalid.append("min_gas_balance must not be negative")
    except InvalidOperation:
        errors.invalid.append(f"min_gas_balance: {conf['min_gas_balance']}")

    try:
        conf['request_timeout_seconds'] = float(conf['request_timeout_seconds'])
    except ValueError:
        errors.invalid.append(f"request_timeout_seconds: {conf['request_timeout_seconds']}")

    if bool(conf['api_key']) != bool(conf['secret_key_path']):
        errors.missing.append('api_key' if not conf['api_key'] else 'secret_key_path')
    elif conf['secret_key_path'] and not Path(conf['secret_key_path']).expanduser().is_file():
        errors.invalid_paths.append(f"secret_key_path: {conf['secret_key_path']}")

    if errors.has_errors():
        raise CustodianConfigError(
            "Custodian Configuration Validation Failed\n\n" +
            errors.format_message()
        )

    conf['simulated'] = not is_configured(conf)
    if conf['simulated']:
        logger.warning("Custodian credentials not configured, signer runs in simulation mode")
    return conf

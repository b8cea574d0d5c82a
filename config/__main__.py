"""Command line interface for checking configuration loading"""
from pathlib import Path

from . import settings_conf, custodian_conf

SECRET_KEYS = {'api_key'}

EXAMPLE_SETTINGS = """[DEFAULT]
# Postgres connection URL, or memory:// for an in-process store
db_url = postgresql://postgres@localhost:5432/assetlink
log_level = INFO
host = 0.0.0.0
port = 8000
# Accepted clock skew for X-TIMESTAMP on signed requests
signature_window_seconds = 300
# Confirmation wait per attempt, and attempts before an operation fails
confirmation_timeout_seconds = 120
confirmation_attempts = 3
poll_interval_seconds = 2

[custodian]
# Leave api_key and secret_key_path empty to run the signer in simulation mode
base_url = https://sandbox-api.fireblocks.io
api_key =
secret_key_path =
contract_template_id =
default_vault_id = 88
gas_asset_id = ETH_TEST5
min_gas_balance = 0.001
request_timeout_seconds = 30
"""


def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        print(f"{key}: {value}")

    print("\nCustodian Configuration:")
    print("-" * 50)
    for key, value in custodian_conf.items():
        if key in SECRET_KEYS and value:
            value = f"{str(value)[:4]}..."
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)
    (examples_dir / "settings.conf.example").write_text(EXAMPLE_SETTINGS)


if __name__ == "__main__":
    main()

"""Gateway to the custodial MPC signer.

``build_gateway`` picks the Fireblocks-backed gateway when credentials
are configured and the simulated one otherwise.
"""
import logging
from typing import Any, Mapping

from .base import (
    CHAIN_ASSETS,
    Completion,
    CompletionStatus,
    GasCheck,
    SignerGateway,
    Submission,
    TaskKind,
    VaultBalance,
    map_chain_to_asset,
)
from .client import (
    CustodianAPIError,
    CustodianAuthError,
    CustodianClient,
    CustodianConnectionError,
)
from .fireblocks import FireblocksGateway, encode_call
from .simulated import SimulatedGateway

logger = logging.getLogger(__name__)


def build_gateway(custodian_conf: Mapping[str, Any], poll_interval: float = 2.0) -> SignerGateway:
    """Create the gateway described by the [custodian] settings."""
    if custodian_conf.get('simulated', True):
        logger.warning("Using simulated signer gateway, no transactions reach a chain")
        return SimulatedGateway()

    client = CustodianClient.from_config(custodian_conf)
    logger.info(f"Using custodian at {client.base_url}")
    return FireblocksGateway(client, custodian_conf, poll_interval=poll_interval)


__all__ = [
    'build_gateway',
    'SignerGateway',
    'FireblocksGateway',
    'SimulatedGateway',
    'CustodianClient',
    'CustodianAPIError',
    'CustodianAuthError',
    'CustodianConnectionError',
    'Completion',
    'CompletionStatus',
    'GasCheck',
    'Submission',
    'TaskKind',
    'VaultBalance',
    'CHAIN_ASSETS',
    'map_chain_to_asset',
    'encode_call',
]

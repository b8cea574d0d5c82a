"""REST API module for the custody back office.

This module provides HTTP endpoints for:
- Custody links and their approval
- Maker-checker operations (MINT, BURN, FREEZE, WITHDRAW)
- Marketplace listings, bids and ownership
- Vault balances held at the custodian
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import custodian_conf, settings_conf
from custody import CustodyManager
from database import Store, close as db_close, get_store
from gateway import SignerGateway, build_gateway
from marketplace import MarketplaceManager
from operations import OperationEngine

logger = logging.getLogger(__name__)

SERVICE_NAME = "AssetLink Custody API"
VERSION = "1.0.0"


def create_app(
    store: Optional[Store] = None,
    gateway: Optional[SignerGateway] = None,
    settings: Optional[Dict[str, Any]] = None,
    custodian: Optional[Dict[str, Any]] = None
) -> FastAPI:
    """Build the API application.

    Args:
        store: Store to use instead of the one named by ``db_url``
        gateway: Signer gateway to use instead of the configured one
        settings: Overrides for the [DEFAULT] settings
        custodian: Overrides for the [custodian] settings
    """
    settings = {**settings_conf, **(settings or {})}
    custodian = {**custodian_conf, **(custodian or {})}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        logger.info("Initializing API...")
        owns_store = store is None
        app.state.settings = settings
        app.state.store = store or await get_store(settings['db_url'])
        app.state.gateway = gateway or build_gateway(custodian, settings['poll_interval_seconds'])
        app.state.engine = OperationEngine.from_config(
            settings, custodian, app.state.store, app.state.gateway
        )
        app.state.custody = CustodyManager(app.state.store)
        app.state.marketplace = MarketplaceManager(app.state.store)

        yield

        logger.info("Shutting down API...")
        await app.state.gateway.close()
        if owns_store:
            await db_close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Custody, tokenization and marketplace back office",
        version=VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {'service': SERVICE_NAME, 'version': VERSION, 'status': 'ok'}

    from .custody import router as custody_router
    from .marketplace import router as marketplace_router
    from .operations import router as operations_router
    from .vault import router as vault_router

    app.include_router(custody_router)
    app.include_router(operations_router)
    app.include_router(marketplace_router)
    app.include_router(vault_router)
    return app


app = create_app()

"""Authentication module using HMAC-signed requests and tenant API keys.

This module provides:
1. API key issuance and lookup
2. Request signature verification with a replay window
3. A FastAPI dependency that resolves the calling principal
4. Role checks for the maker-checker workflow
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional, Tuple

from fastapi import Header, HTTPException, Request, status

from database import get_store
from database.models import ApiKey, Role
from errors import RoleError
from .signature import (
    DEFAULT_WINDOW_SECONDS,
    create_signature_payload,
    generate_signature,
    is_timestamp_valid,
    verify_signature,
)

# Configure logging
logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base exception for authentication errors."""
    pass


class InvalidApiKeyError(AuthError):
    """Raised when an API key is unknown or inactive."""
    pass


class InvalidSignatureError(AuthError):
    """Raised when a request signature does not verify."""
    pass


class ExpiredTimestampError(AuthError):
    """Raised when a request timestamp is outside the replay window."""
    pass


@dataclass(frozen=True)
class Principal:
    """Verified caller of an API request."""
    key_id: str
    tenant_id: str
    role: Role
    user_id: Optional[str] = None
    permissions: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def identity(self) -> str:
        """Identity compared for maker-checker separation."""
        return self.user_id or self.key_id


def require_maker(principal: Principal, action: str = "create requests") -> None:
    if not principal.role.can_create:
        raise RoleError(f"Role {principal.role.value} cannot {action}; MAKER required")


def require_checker(principal: Principal, action: str = "approve or reject requests") -> None:
    if not principal.role.can_check:
        raise RoleError(f"Role {principal.role.value} cannot {action}; CHECKER required")


class AuthManager:
    """Manages API keys and verifies signed requests."""

    def __init__(self, store=None, window_seconds: int = DEFAULT_WINDOW_SECONDS):
        """Initialize auth manager.

        Args:
            store: Optional store. If not provided, will get from database module.
            window_seconds: Accepted clock skew for request timestamps
        """
        self.store = store
        self.window_seconds = window_seconds

    async def ensure_store(self):
        """Ensure a store is available."""
        if not self.store:
            self.store = await get_store()

    async def create_api_key(
        self,
        tenant_id: str,
        role: Role,
        end_user_id: Optional[str] = None,
        name: Optional[str] = None,
        permissions: Optional[list] = None
    ) -> ApiKey:
        """Issue a new API key.

        Returns:
            The stored key, including its secret. The secret is only ever
            returned here.
        """
        await self.ensure_store()

        api_key = ApiKey(
            public_key=f"ak_{secrets.token_hex(16)}",
            secret_key=secrets.token_hex(32),
            tenant_id=tenant_id,
            role=Role(role),
            end_user_id=end_user_id,
            name=name,
            permissions=permissions or [],
        )
        async with self.store.transaction() as tx:
            await tx.insert(api_key)
        logger.info(f"Issued {api_key.role.value} API key {api_key.public_key} for tenant {tenant_id}")
        return api_key

    async def deactivate_api_key(self, public_key: str) -> None:
        await self.ensure_store()
        async with self.store.transaction() as tx:
            api_key = await tx.find_one(ApiKey, for_update=True, public_key=public_key)
            if not api_key:
                raise InvalidApiKeyError(f"Unknown API key {public_key}")
            api_key.is_active = False
            await tx.update(api_key)

    async def authenticate(
        self,
        public_key: Optional[str],
        signature: Optional[str],
        timestamp: Optional[str],
        method: str,
        path: str,
        body: bytes = b'',
        user_id: Optional[str] = None,
    ) -> Principal:
        """Verify a signed request and resolve its principal.

        Raises:
            InvalidApiKeyError: If the key is missing, unknown or inactive
            ExpiredTimestampError: If the timestamp is missing or stale
            InvalidSignatureError: If the signature does not match
        """
        await self.ensure_store()

        if not public_key or not signature or not timestamp:
            raise InvalidApiKeyError("Missing authentication headers")

        async with self.store.transaction() as tx:
            api_key = await tx.find_one(ApiKey, public_key=public_key)

        if not api_key or not api_key.is_active:
            raise InvalidApiKeyError("Invalid or inactive API key")

        if not is_timestamp_valid(timestamp, self.window_seconds):
            raise ExpiredTimestampError("Request timestamp outside the accepted window")

        if not verify_signature(signature, method, path, timestamp, body, api_key.secret_key):
            logger.warning(f"Signature mismatch for API key {public_key}")
            raise InvalidSignatureError("Invalid request signature")

        return Principal(
            key_id=api_key.public_key,
            tenant_id=api_key.tenant_id,
            role=api_key.role,
            user_id=user_id or api_key.end_user_id,
            permissions=tuple(api_key.permissions),
        )


async def get_principal(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias='X-API-KEY'),
    x_signature: Optional[str] = Header(None, alias='X-SIGNATURE'),
    x_timestamp: Optional[str] = Header(None, alias='X-TIMESTAMP'),
    x_user_id: Optional[str] = Header(None, alias='X-USER-ID'),
) -> Principal:
    """FastAPI dependency that authenticates the request.

    Raises:
        HTTPException: 401 if authentication fails
    """
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    body = await request.body()

    manager = AuthManager(
        request.app.state.store,
        window_seconds=request.app.state.settings['signature_window_seconds']
    )
    try:
        return await manager.authenticate(
            x_api_key, x_signature, x_timestamp, request.method, path, body, x_user_id
        )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )


__all__ = [
    'AuthManager',
    'AuthError',
    'InvalidApiKeyError',
    'InvalidSignatureError',
    'ExpiredTimestampError',
    'Principal',
    'get_principal',
    'require_maker',
    'require_checker',
    'create_signature_payload',
    'generate_signature',
    'verify_signature',
    'is_timestamp_valid',
]

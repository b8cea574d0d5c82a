"""HTTP client for the custodian REST API.

Every request carries the API key and a short-lived RS256 JWT that binds
the request path and a hash of the body, with a random nonce.
"""
import hashlib
import json
import logging
import secrets
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import backoff
import requests
from jose import jwt

from errors import GatewayError

logger = logging.getLogger(__name__)

TOKEN_LIFETIME_SECONDS = 55


class CustodianAPIError(GatewayError):
    """Custodian returned an error response"""

    def __init__(self, message: str, http_status: Optional[int] = None, path: Optional[str] = None):
        self.http_status = http_status
        self.path = path
        super().__init__(
            f"Custodian error [{http_status}] on {path}: {message}" if http_status else message,
            {'httpStatus': http_status, 'path': path}
        )


class CustodianConnectionError(CustodianAPIError):
    """Raised when the custodian cannot be reached"""

    def __init__(self, message: str, path: Optional[str] = None, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message, None, path)


class CustodianAuthError(CustodianAPIError):
    """Raised when the custodian rejects our credentials"""
    pass


def body_hash(body: str) -> str:
    return hashlib.sha256(body.encode('utf-8')).hexdigest()


class CustodianClient:
    """Custodian REST client"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        secret_key: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """Initialize the client.

        Args:
            base_url: API origin, e.g. https://sandbox-api.fireblocks.io
            api_key: Custodian API key
            secret_key: PEM encoded RSA private key used to sign requests
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests session
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.secret_key = secret_key
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers['Content-Type'] = 'application/json'
        self.session.headers['X-API-Key'] = api_key

    @classmethod
    def from_config(cls, conf: Mapping[str, Any]) -> 'CustodianClient':
        """Build a client from the [custodian] settings."""
        secret_key = Path(conf['secret_key_path']).expanduser().read_text()
        return cls(
            conf['base_url'],
            conf['api_key'],
            secret_key,
            timeout=conf.get('request_timeout_seconds', 30.0)
        )

    def sign(self, path: str, body: str = '') -> str:
        """Create the bearer token for one request."""
        now = int(time.time())
        claims = {
            'uri': path,
            'nonce': secrets.token_hex(16),
            'iat': now,
            'exp': now + TOKEN_LIFETIME_SECONDS,
            'sub': self.api_key,
            'bodyHash': body_hash(body),
        }
        return jwt.encode(claims, self.secret_key, algorithm='RS256')

    def request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Send one signed request.

        Args:
            method: HTTP method
            path: Path including the /v1 prefix and any query string
            payload: JSON body for POST requests

        Returns:
            Parsed JSON response

        Raises:
            CustodianConnectionError: Transport failure or timeout
            CustodianAuthError: Credentials rejected
            CustodianAPIError: Any other error response
        """
        body = json.dumps(payload, separators=(',', ':')) if payload is not None else ''
        headers = {'Authorization': f"Bearer {self.sign(path, body)}"}

        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                data=body.encode('utf-8') if body else None,
                headers=headers,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise CustodianConnectionError(
                f"Request timed out after {self.timeout} seconds", path, timed_out=True
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise CustodianConnectionError(
                f"Failed to connect to custodian at {self.base_url}", path
            ) from e
        except requests.exceptions.RequestException as e:
            raise CustodianConnectionError(f"Request failed: {str(e)}", path) from e

        if response.status_code == 401:
            raise CustodianAuthError("Authentication failed - check api_key/secret_key_path", 401, path)

        try:
            result = response.json() if response.content else {}
        except ValueError:
            result = None

        if response.status_code >= 400:
            message = None
            if isinstance(result, dict):
                message = result.get('message') or result.get('error')
            logger.error(f"Custodian returned {response.status_code} for {method} {path}: {message}")
            raise CustodianAPIError(message or response.text or 'Unknown error', response.status_code, path)

        if result is None:
            raise CustodianAPIError(f"Invalid response format: {response.text[:200]}", response.status_code, path)
        return result

    @backoff.on_exception(
        backoff.expo,
        CustodianConnectionError,
        max_tries=3,
        factor=1
    )
    def get(self, path: str) -> Any:
        """GET with bounded retries on transport failures."""
        return self.request('GET', path)

    def post(self, path: str, payload: Dict[str, Any]) -> Any:
        """POST once. Submissions are never retried."""
        return self.request('POST', path, payload)

    def close(self) -> None:
        self.session.close()

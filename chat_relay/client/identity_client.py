"""
Client for the external identity provider (bearer-token issuer).
Logs in or signs up and hands back the issued token; the relay itself
never validates it.
"""

import httpx
import logging
from typing import Any, Dict, Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_log,
    after_log
)

from chat_relay.core.exceptions import IdentityError

logger = logging.getLogger(__name__)


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    """Authorization header for requests made on behalf of a logged-in user."""
    if not token:
        return {}
    return {'Authorization': f'Bearer {token}'}


class IdentityClient:
    """
    Talks to ``POST /auth/local`` and ``POST /auth/local/register``.

    Both endpoints return ``{"jwt": ...}`` on success and
    ``{"error": {"message": ...}}`` on failure.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: Identity provider API root, e.g. http://localhost:1337/api
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            headers={'Content-Type': 'application/json'},
            transport=transport
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def login(self, identifier: str, password: str) -> str:
        """Exchange credentials for a bearer token."""
        data = await self._post(
            '/auth/local',
            {'identifier': identifier, 'password': password},
            fallback_error="Login failed"
        )
        logger.info(f"Logged in as {identifier}")
        return data['jwt']

    async def register(self, username: str, email: str, password: str) -> str:
        """Create an account and return its bearer token."""
        data = await self._post(
            '/auth/local/register',
            {'username': username, 'email': email, 'password': password},
            fallback_error="Signup failed"
        )
        logger.info(f"Registered user {username}")
        return data['jwt']

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        before=before_log(logger, logging.DEBUG),
        after=after_log(logger, logging.WARNING),
        reraise=True
    )
    async def _send(self, endpoint: str, body: Dict[str, Any]) -> httpx.Response:
        return await self.client.post(endpoint, json=body)

    async def _post(self, endpoint: str, body: Dict[str, Any], fallback_error: str) -> Dict[str, Any]:
        try:
            response = await self._send(endpoint, body)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable at {self.base_url}{endpoint}: {e}")
            raise IdentityError(fallback_error) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 401:
            logger.warning("Identity provider rejected the request as unauthorized")
            raise IdentityError(
                self._error_message(data) or "Token expired or unauthorized access",
                status_code=401
            )

        if response.is_error:
            message = self._error_message(data) or fallback_error
            logger.warning(f"{fallback_error}: {message} (HTTP {response.status_code})")
            raise IdentityError(message, status_code=response.status_code)

        if not isinstance(data, dict) or not data.get('jwt'):
            raise IdentityError(fallback_error, status_code=response.status_code)

        return data

    @staticmethod
    def _error_message(data: Any) -> Optional[str]:
        if isinstance(data, dict) and isinstance(data.get('error'), dict):
            return data['error'].get('message')
        return None

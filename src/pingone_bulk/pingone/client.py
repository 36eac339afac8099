"""Async client for the PingOne management API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from ..core.config import ServiceConfig
from ..core.errors import FatalJobError, RecordError
from ..core.logging import redact

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10.0
USER_AGENT = "pingone-bulk/0.1"


@dataclass
class WorkerToken:
    access_token: str
    token_type: str
    created_at: float
    expires_at: float

    def is_valid(self, now: float, buffer_seconds: float) -> bool:
        return now < self.expires_at - buffer_seconds

    def age_minutes(self, now: float) -> int:
        return int((now - self.created_at) // 60)


class TokenCache:
    """Worker tokens keyed by ``(auth host, environment, client id)``."""

    def __init__(self) -> None:
        self._tokens: Dict[Tuple[str, str, str], WorkerToken] = {}

    def get(self, key: Tuple[str, str, str]) -> Optional[WorkerToken]:
        return self._tokens.get(key)

    def put(self, key: Tuple[str, str, str], token: WorkerToken) -> None:
        self._tokens[key] = token

    def invalidate(self, key: Tuple[str, str, str]) -> None:
        self._tokens.pop(key, None)

    def clear(self) -> None:
        self._tokens.clear()


_default_token_cache = TokenCache()


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        details = data.get("details")
        if isinstance(details, list) and details and isinstance(details[0], dict) and details[0].get("message"):
            return str(details[0]["message"])
        for key in ("detail", "message"):
            if data.get(key):
                return str(data[key])

    if response.status_code == 404:
        return "User not found"
    if response.status_code == 403:
        return "Insufficient permissions"
    return f"PingOne API error ({response.status_code}): {response.reason_phrase}"


class PingOneClient:
    """Client for the PingOne users and populations endpoints.

    Worker tokens come from the client-credentials grant and are cached for
    ``token_cache_seconds``; a token is renewed ``token_buffer_seconds`` before
    it would expire.
    """

    def __init__(
        self,
        environment_id: str,
        client_id: str,
        client_secret: str,
        region: str = "com",
        timeout: float = REQUEST_TIMEOUT,
        token_cache_seconds: float = 50 * 60,
        token_buffer_seconds: float = 2 * 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_cache: Optional[TokenCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.environment_id = environment_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_base_url = f"https://auth.pingone.{region}"
        self.api_base_url = f"https://api.pingone.{region}/v1"
        self.timeout = timeout
        self.token_cache_seconds = token_cache_seconds
        self.token_buffer_seconds = token_buffer_seconds
        self._transport = transport
        self._token_cache = token_cache or _default_token_cache
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._default_population_id: Optional[str] = None

    @classmethod
    def from_config(cls, config: ServiceConfig, **overrides: Any) -> PingOneClient:
        """Build a client from service config; keyword overrides win (e.g. request credentials)."""
        params: Dict[str, Any] = {
            "environment_id": config.environment_id,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "region": config.region,
            "timeout": config.request_timeout,
            "token_cache_seconds": config.token_cache_seconds,
            "token_buffer_seconds": config.token_buffer_seconds,
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**params)

    @property
    def _cache_key(self) -> Tuple[str, str, str]:
        return (self.auth_base_url, self.environment_id, self.client_id)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PingOneClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def invalidate_token(self) -> None:
        self._token_cache.invalidate(self._cache_key)

    async def get_worker_token(self, force: bool = False) -> str:
        """Return a cached worker token or request a new one.

        Raises:
            FatalJobError: PingOne refused the credentials or could not be reached
        """
        now = self._clock()
        cached = self._token_cache.get(self._cache_key)
        if cached and not force and cached.is_valid(now, self.token_buffer_seconds):
            remaining = int((cached.expires_at - now) // 60)
            logger.debug(f"Reusing worker token (age {cached.age_minutes(now)}m, {remaining}m remaining)")
            return cached.access_token

        logger.info(
            f"Requesting worker token for environment {redact(self.environment_id, 8)} "
            f"client {redact(self.client_id)} ({'expired' if cached else 'no cached token'})"
        )
        client = await self._get_client()
        url = f"{self.auth_base_url}/{self.environment_id}/as/token"

        try:
            response = await client.post(
                url,
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
        except httpx.HTTPError as e:
            raise FatalJobError(f"Failed to communicate with PingOne API: {e}") from e

        if response.is_error:
            logger.error(f"Worker token request failed with HTTP {response.status_code}")
            raise FatalJobError(f"PingOne API error ({response.status_code}): {_error_message(response)}")

        data = response.json()
        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise FatalJobError("Invalid token response from PingOne")

        lifetime = float(self.token_cache_seconds)
        expires_in = data.get("expires_in")
        if expires_in:
            lifetime = min(lifetime, float(expires_in))

        token = WorkerToken(
            access_token=access_token,
            token_type=data.get("token_type", "Bearer"),
            created_at=now,
            expires_at=now + lifetime,
        )
        self._token_cache.put(self._cache_key, token)
        logger.info(f"Worker token cached for {int(lifetime // 60)} minutes")
        return token.access_token

    async def test_credentials(self) -> bool:
        await self.get_worker_token(force=True)
        return True

    async def _request(
        self,
        method: str,
        path: str,
        record_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        token = await self.get_worker_token()
        client = await self._get_client()
        url = f"{self.api_base_url}/environments/{quote(self.environment_id, safe='')}{path}"

        try:
            response = await client.request(
                method,
                url,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise RecordError(f"PingOne request timed out: {e}", record_id=record_id) from e
        except httpx.TransportError as e:
            raise FatalJobError(f"Failed to communicate with PingOne API: {e}") from e

        if response.status_code == 401:
            self.invalidate_token()

        if response.is_error:
            details = None
            try:
                details = response.json()
            except ValueError:
                pass
            raise RecordError(
                _error_message(response),
                record_id=record_id,
                status_code=response.status_code,
                details=details,
            )
        return response

    async def get_default_population_id(self) -> str:
        """Default population of the environment, falling back to the first one."""
        if self._default_population_id:
            return self._default_population_id

        try:
            response = await self._request("GET", "/populations")
        except RecordError as e:
            raise FatalJobError(f"Failed to get default population: {e.message}") from e

        populations = response.json().get("_embedded", {}).get("populations", [])
        population = next((p for p in populations if p.get("default") is True), None)
        if population is None and populations:
            population = populations[0]
        if population is None:
            raise FatalJobError("No populations found in environment")

        logger.info(f"Using population {population.get('name')} ({population['id']})")
        self._default_population_id = population["id"]
        return self._default_population_id

    async def create_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", "/users", record_id=user.get("username"), json=user)
        return response.json()

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/users/{quote(user_id, safe='')}", record_id=user_id)
        return response.json()

    async def find_user(
        self,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Look a user up by username (preferred) or email. None when absent."""
        if username:
            scim_filter = f'username eq "{username}"'
        elif email:
            scim_filter = f'email eq "{email}"'
        else:
            raise ValueError("username or email is required")

        response = await self._request("GET", "/users", record_id=username or email, params={"filter": scim_filter})
        users = response.json().get("_embedded", {}).get("users", [])
        return users[0] if users else None

    async def update_user(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("PATCH", f"/users/{quote(user_id, safe='')}", record_id=user_id, json=data)
        return response.json()

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{quote(user_id, safe='')}", record_id=user_id)

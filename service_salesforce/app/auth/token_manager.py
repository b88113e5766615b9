"""
OAuth2 access token lifecycle for the Salesforce REST API.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from shared.errors import AuthenticationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_salesforce.app.config import SalesforceConfig


@dataclass(frozen=True)
class Credential:
    """Cached bearer credential."""

    access_token: str
    issued_for: str
    expires_at: float

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        return now < self.expires_at - buffer_seconds


class TokenManager:
    """Obtains and caches the bearer token used by every authenticated call.

    The token comes from a username/password grant. Salesforce does not report
    the token lifetime, so a fixed ``TOKEN_LIFETIME_SECONDS`` is assumed and
    the token is renewed ``EXPIRY_BUFFER_SECONDS`` before that.

    Renewal is single-flight: concurrent callers that find the cache stale
    queue on one lock, and only the first of them talks to the token
    endpoint; the rest re-check the cache once they get the lock.
    """

    TOKEN_LIFETIME_SECONDS = 2 * 60 * 60
    EXPIRY_BUFFER_SECONDS = 5 * 60

    def __init__(
        self,
        config: SalesforceConfig,
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.config = config
        self.logger = get_logger("salesforce.auth.token_manager")
        self.metrics = metrics
        self._client = http_client
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()

    @property
    def expires_at(self) -> Optional[float]:
        credential = self._credential
        return credential.expires_at if credential else None

    async def get_token(self) -> str:
        """Return a valid access token, renewing it if needed."""
        token = self._cached_token()
        if token is not None:
            return token

        if self._credential is not None:
            self.logger.info("Cached token close to expiry, renewing")

        async with self._lock:
            # Another caller may have renewed while we waited
            token = self._cached_token()
            if token is not None:
                self.logger.debug("Token already renewed by a concurrent caller")
                return token

            credential = await self._request_token()
            self._credential = credential
            return credential.access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call renews it."""
        self.logger.warning("Access token invalidated")
        self._credential = None

    def _cached_token(self) -> Optional[str]:
        credential = self._credential
        if credential is not None and credential.is_fresh(self._clock(), self.EXPIRY_BUFFER_SECONDS):
            return credential.access_token
        return None

    async def _request_token(self) -> Credential:
        """Exchange the configured credentials for a new access token."""
        self.logger.info("Requesting new OAuth2 token", endpoint=self.config.token_url())
        form = {
            "grant_type": "password",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "username": self.config.username,
            "password": self.config.full_password(),
        }

        try:
            response = await self._client.post(self.config.token_url(), data=form)
        except httpx.TransportError as exc:
            self._record_refresh("failure")
            self.logger.error("Token endpoint unreachable", error=str(exc))
            raise AuthenticationError(
                "Token endpoint unavailable",
                details={"error": str(exc)},
                status_code=None,
            ) from exc

        if not response.is_success:
            self._record_refresh("failure")
            self.logger.error(
                "OAuth2 token request failed",
                status_code=response.status_code,
                response=response.text
            )
            raise AuthenticationError(
                f"OAuth2 authentication failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            self._record_refresh("failure")
            raise AuthenticationError(
                "Invalid OAuth2 response: empty access_token",
                status_code=response.status_code,
            )

        issued_for = payload.get("instance_url") or self.config.instance_url
        expires_at = self._clock() + self.TOKEN_LIFETIME_SECONDS
        self._record_refresh("success")
        self.logger.info("OAuth2 token obtained and cached", expires_at=expires_at, instance_url=issued_for)
        return Credential(access_token=access_token, issued_for=issued_for, expires_at=expires_at)

    def _record_refresh(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("salesforce_token_refresh_total", status=status)

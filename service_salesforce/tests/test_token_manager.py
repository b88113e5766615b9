"""
Unit tests for the OAuth2 TokenManager.
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest
from prometheus_client import CollectorRegistry

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_salesforce.app.auth.token_manager import TokenManager
from service_salesforce.app.config import SalesforceConfig
from shared.errors import AuthenticationError
from shared.metrics import MetricsCollector


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenEndpoint:
    """Scripted token endpoint recording every exchange."""

    def __init__(self, responses=None, delay: float = 0.0):
        self.requests = []
        self.responses = list(responses or [])
        self.delay = delay
        self.issued = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        self.issued += 1
        return httpx.Response(200, json={
            "access_token": f"token-{self.issued}",
            "instance_url": "https://test.my.salesforce.com",
            "token_type": "Bearer",
        })


class TestTokenManager:
    """Test cases for TokenManager."""

    @pytest.fixture
    def config(self):
        """Create Salesforce configuration."""
        return SalesforceConfig(
            instance_url="https://test.my.salesforce.com",
            client_id="client-id",
            client_secret="client-secret",
            username="sync@example.com",
            password="hunter2",
            security_token="SECTOKEN",
        )

    @pytest.fixture
    def clock(self):
        """Create a controllable clock."""
        return FakeClock()

    @pytest.fixture
    def registry(self):
        """Create an isolated metrics registry."""
        return CollectorRegistry()

    def make_manager(self, config, endpoint, clock, registry=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
        metrics = MetricsCollector("salesforce", registry) if registry is not None else None
        return TokenManager(config, client, clock=clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_password_grant_request(self, config, clock):
        """Test the token request is a password grant with the security token appended."""
        endpoint = TokenEndpoint()
        manager = self.make_manager(config, endpoint, clock)

        token = await manager.get_token()

        assert token == "token-1"
        request = endpoint.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://test.my.salesforce.com/services/oauth2/token"
        form = parse_qs(request.content.decode())
        assert form["grant_type"] == ["password"]
        assert form["client_id"] == ["client-id"]
        assert form["client_secret"] == ["client-secret"]
        assert form["username"] == ["sync@example.com"]
        assert form["password"] == ["hunter2SECTOKEN"]

    @pytest.mark.asyncio
    async def test_explicit_token_endpoint(self, config, clock):
        """Test a configured token endpoint takes precedence."""
        config = config.model_copy(update={"token_endpoint": "https://login.salesforce.com/services/oauth2/token"})
        endpoint = TokenEndpoint()
        manager = self.make_manager(config, endpoint, clock)

        await manager.get_token()

        assert endpoint.requests[0].url.host == "login.salesforce.com"

    @pytest.mark.asyncio
    async def test_token_is_cached(self, config, clock):
        """Test a fresh token is served from cache."""
        endpoint = TokenEndpoint()
        manager = self.make_manager(config, endpoint, clock)

        first = await manager.get_token()
        clock.now = 3600
        second = await manager.get_token()

        assert first == second == "token-1"
        assert len(endpoint.requests) == 1
        assert manager.expires_at == TokenManager.TOKEN_LIFETIME_SECONDS

    @pytest.mark.asyncio
    async def test_renews_inside_expiry_buffer(self, config, clock):
        """Test the token is renewed once within five minutes of expiry."""
        endpoint = TokenEndpoint()
        manager = self.make_manager(config, endpoint, clock)
        await manager.get_token()

        clock.now = 7200 - 300 - 0.001
        assert await manager.get_token() == "token-1"

        clock.now = 7200 - 300
        assert await manager.get_token() == "token-2"
        assert len(endpoint.requests) == 2
        assert manager.expires_at == 7200 - 300 + 7200

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_renewal(self, config, clock):
        """Test concurrent callers with no cached token trigger a single exchange."""
        endpoint = TokenEndpoint(delay=0.01)
        manager = self.make_manager(config, endpoint, clock)

        tokens = await asyncio.gather(*(manager.get_token() for _ in range(20)))

        assert len(endpoint.requests) == 1
        assert set(tokens) == {"token-1"}

    @pytest.mark.asyncio
    async def test_invalidate_forces_renewal(self, config, clock):
        """Test invalidate drops the cached token."""
        endpoint = TokenEndpoint()
        manager = self.make_manager(config, endpoint, clock)
        await manager.get_token()

        manager.invalidate()

        assert manager.expires_at is None
        assert await manager.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, config, clock, registry):
        """Test a non-success token response raises AuthenticationError."""
        endpoint = TokenEndpoint(responses=[httpx.Response(400, json={
            "error": "invalid_grant",
            "error_description": "authentication failure",
        })])
        manager = self.make_manager(config, endpoint, clock, registry)

        with pytest.raises(AuthenticationError) as exc_info:
            await manager.get_token()

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert manager.expires_at is None
        assert registry.get_sample_value("salesforce_token_refresh_total", {"status": "failure"}) == 1

    @pytest.mark.asyncio
    async def test_empty_access_token(self, config, clock):
        """Test a success response without an access token is rejected."""
        endpoint = TokenEndpoint(responses=[httpx.Response(200, json={"access_token": ""})])
        manager = self.make_manager(config, endpoint, clock)

        with pytest.raises(AuthenticationError, match="empty access_token"):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_non_json_token_response(self, config, clock):
        """Test a success response that is not JSON is rejected."""
        endpoint = TokenEndpoint(responses=[httpx.Response(200, content=b"<html>")])
        manager = self.make_manager(config, endpoint, clock)

        with pytest.raises(AuthenticationError):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, config, clock):
        """Test a network failure during exchange raises AuthenticationError."""
        endpoint = TokenEndpoint(responses=[httpx.ConnectError("connection refused")])
        manager = self.make_manager(config, endpoint, clock)

        with pytest.raises(AuthenticationError) as exc_info:
            await manager.get_token()

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_failure_does_not_poison_cache(self, config, clock):
        """Test the next caller retries the exchange after a failure."""
        endpoint = TokenEndpoint(responses=[httpx.Response(503)])
        manager = self.make_manager(config, endpoint, clock)

        with pytest.raises(AuthenticationError):
            await manager.get_token()

        assert await manager.get_token() == "token-1"
        assert len(endpoint.requests) == 2

    @pytest.mark.asyncio
    async def test_success_metric(self, config, clock, registry):
        """Test successful exchanges are counted."""
        manager = self.make_manager(config, TokenEndpoint(), clock, registry)

        await manager.get_token()

        assert registry.get_sample_value("salesforce_token_refresh_total", {"status": "success"}) == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_propagates(self, config, clock):
        """Test a caller cancelled while waiting for the lock sees CancelledError."""
        entered = asyncio.Event()
        release = asyncio.Event()
        endpoint = TokenEndpoint()

        async def slow_endpoint(request):
            entered.set()
            await release.wait()
            return await endpoint(request)

        manager = self.make_manager(config, slow_endpoint, clock)

        leader = asyncio.create_task(manager.get_token())
        await entered.wait()
        waiter = asyncio.create_task(manager.get_token())
        await asyncio.sleep(0)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        assert await leader == "token-1"
        assert len(endpoint.requests) == 1
        assert await manager.get_token() == "token-1"

"""
Unit tests for the authenticated request executor.
"""

import httpx
import pytest
from prometheus_client import CollectorRegistry

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_salesforce.app.adapters.request_executor import AuthenticatedRequestExecutor
from service_salesforce.app.auth.token_manager import TokenManager
from service_salesforce.app.config import SalesforceConfig
from service_salesforce.app.resilience.pipeline import ResiliencePipeline
from shared.errors import AuthenticationError
from shared.metrics import MetricsCollector

TOKEN_PATH = "/services/oauth2/token"


class FakeSalesforce:
    """Mock Salesforce serving the token endpoint and scripted API responses."""

    def __init__(self, *api_responses):
        self.api_responses = list(api_responses)
        self.token_requests = []
        self.api_requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            self.token_requests.append(request)
            return httpx.Response(200, json={"access_token": f"token-{len(self.token_requests)}"})

        self.api_requests.append(request)
        if len(self.api_responses) > 1:
            return self.api_responses.pop(0)
        return self.api_responses[0]


async def no_sleep(delay):
    return None


class TestAuthenticatedRequestExecutor:
    """Test cases for AuthenticatedRequestExecutor."""

    @pytest.fixture
    def config(self):
        """Create Salesforce configuration."""
        return SalesforceConfig(
            instance_url="https://test.my.salesforce.com",
            client_id="client-id",
            client_secret="client-secret",
            username="sync@example.com",
            password="hunter2",
        )

    @pytest.fixture
    def registry(self):
        """Create an isolated metrics registry."""
        return CollectorRegistry()

    def make_executor(self, config, salesforce, registry=None):
        client = httpx.AsyncClient(
            base_url=config.api_base_url(),
            transport=httpx.MockTransport(salesforce),
        )
        metrics = MetricsCollector("salesforce", registry) if registry is not None else None
        token_manager = TokenManager(config, client, metrics=metrics)
        pipeline = ResiliencePipeline(config.resilience_config(), sleep=no_sleep, metrics=metrics)
        return AuthenticatedRequestExecutor(client, token_manager, pipeline, metrics=metrics)

    @pytest.mark.asyncio
    async def test_attaches_bearer_token(self, config):
        """Test requests carry the cached bearer token."""
        salesforce = FakeSalesforce(httpx.Response(200, json={"Id": "001"}))
        executor = self.make_executor(config, salesforce)

        response = await executor.send("GET", "sobjects/Account/001", params={"fields": "Id"})

        assert response.status_code == 200
        request = salesforce.api_requests[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.url.path == "/services/data/v58.0/sobjects/Account/001"
        assert request.url.params["fields"] == "Id"

    @pytest.mark.asyncio
    async def test_token_reused_across_requests(self, config):
        """Test a single token exchange serves many requests."""
        salesforce = FakeSalesforce(httpx.Response(200, json={}))
        executor = self.make_executor(config, salesforce)

        for _ in range(3):
            await executor.send("GET", "limits")

        assert len(salesforce.token_requests) == 1
        assert len(salesforce.api_requests) == 3

    @pytest.mark.asyncio
    async def test_single_unauthorized_renews_token(self, config):
        """Test one 401 invalidates the token and the retry succeeds."""
        salesforce = FakeSalesforce(
            httpx.Response(401, json=[{"message": "Session expired or invalid", "errorCode": "INVALID_SESSION_ID"}]),
            httpx.Response(200, json={"ok": True}),
        )
        executor = self.make_executor(config, salesforce)

        response = await executor.send("GET", "limits")

        assert response.status_code == 200
        assert len(salesforce.token_requests) == 2
        assert [r.headers["Authorization"] for r in salesforce.api_requests] == [
            "Bearer token-1",
            "Bearer token-2",
        ]

    @pytest.mark.asyncio
    async def test_repeated_unauthorized_is_fatal(self, config, registry):
        """Test a 401 after renewal raises AuthenticationError."""
        salesforce = FakeSalesforce(
            httpx.Response(401, json=[{"message": "Session expired or invalid", "errorCode": "INVALID_SESSION_ID"}])
        )
        executor = self.make_executor(config, salesforce, registry)

        with pytest.raises(AuthenticationError) as exc_info:
            await executor.send("GET", "limits")

        assert "Authentication failed after token renewal" in exc_info.value.message
        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == "INVALID_SESSION_ID"
        assert len(salesforce.token_requests) == 2
        assert len(salesforce.api_requests) == 2
        assert registry.get_sample_value(
            "errors_total", {"error_type": "authentication", "service": "salesforce"}
        ) == 1

    @pytest.mark.asyncio
    async def test_other_failures_returned_verbatim(self, config):
        """Test non-authentication failures are returned without token renewal."""
        salesforce = FakeSalesforce(
            httpx.Response(400, json=[{"message": "unexpected token", "errorCode": "MALFORMED_QUERY"}])
        )
        executor = self.make_executor(config, salesforce)

        response = await executor.send("GET", "query", params={"q": "SELEKT Id FROM Account"})

        assert response.status_code == 400
        assert len(salesforce.token_requests) == 1
        assert len(salesforce.api_requests) == 1

    @pytest.mark.asyncio
    async def test_request_metrics(self, config, registry):
        """Test each attempt is recorded with its status code."""
        salesforce = FakeSalesforce(httpx.Response(503), httpx.Response(200, json={}))
        executor = self.make_executor(config, salesforce, registry)

        await executor.send("GET", "limits")

        assert registry.get_sample_value(
            "salesforce_requests_total", {"method": "GET", "status_code": "503"}
        ) == 1
        assert registry.get_sample_value(
            "salesforce_requests_total", {"method": "GET", "status_code": "200"}
        ) == 1
        assert registry.get_sample_value(
            "salesforce_request_duration_seconds_count", {"method": "GET"}
        ) == 2

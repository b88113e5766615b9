"""
Authenticated request execution against the Salesforce REST API.
"""

import time
from typing import Any, Dict, Optional

import httpx

from shared.errors import AuthenticationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_salesforce.app.auth.token_manager import TokenManager
from service_salesforce.app.resilience.classifier import FailureKind, classify_response
from service_salesforce.app.resilience.pipeline import ResiliencePipeline


class AuthenticatedRequestExecutor:
    """Sends bearer-authenticated requests through the resilience pipeline.

    A 401 invalidates the cached token and the request is sent once more with
    a fresh one. A second 401 is final.
    """

    MAX_AUTH_ATTEMPTS = 2

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_manager: TokenManager,
        pipeline: ResiliencePipeline,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.http_client = http_client
        self.token_manager = token_manager
        self.pipeline = pipeline
        self.metrics = metrics
        self.logger = get_logger("salesforce.request_executor")

    async def send(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Send ``method path`` and return the final response.

        Failed responses other than authentication failures are returned to
        the caller untouched, already retried by the pipeline where that
        applies.
        """
        response: Optional[httpx.Response] = None
        for attempt in range(self.MAX_AUTH_ATTEMPTS):
            access_token = await self.token_manager.get_token()
            headers = {"Authorization": f"Bearer {access_token}"}

            async def _send() -> httpx.Response:
                request = self.http_client.build_request(method, path, params=params, headers=headers)
                started = time.perf_counter()
                status: Any = "error"
                try:
                    sent = await self.http_client.send(request)
                    status = sent.status_code
                    return sent
                finally:
                    if self.metrics:
                        self.metrics.record_http_request(method, status, time.perf_counter() - started)

            response = await self.pipeline.execute(_send)
            if response.status_code != 401:
                return response

            if attempt + 1 < self.MAX_AUTH_ATTEMPTS:
                self.logger.warning("Access token rejected (401), invalidating and retrying", path=path)
                self.token_manager.invalidate()

        classification = classify_response(response)
        self.logger.error("Authentication failed after token renewal", path=path)
        if self.metrics:
            self.metrics.record_error(FailureKind.AUTHENTICATION.value)
        raise AuthenticationError(
            "Authentication failed after token renewal",
            status_code=response.status_code,
            error_code=classification.error_code if classification else None,
            body=response.text,
            classification=classification,
        )

"""
Salesforce REST API client.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

import httpx
from pydantic import ValidationError

from shared.circuit_breaker import CircuitBreaker
from shared.errors import MalformedResponseError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_salesforce.app.adapters.query_executor import PaginatedQueryExecutor
from service_salesforce.app.adapters.request_executor import AuthenticatedRequestExecutor
from service_salesforce.app.auth.token_manager import TokenManager
from service_salesforce.app.config import SalesforceConfig
from service_salesforce.app.domain.models import SalesforceAccount
from service_salesforce.app.resilience.classifier import ensure_success
from service_salesforce.app.resilience.pipeline import ResiliencePipeline

ACCOUNT_FIELDS = (
    "Id",
    "Name",
    "Type",
    "Industry",
    "AnnualRevenue",
    "NumberOfEmployees",
    "BillingCity",
    "BillingCountry",
    "LastModifiedDate",
    "CreatedDate",
    "IsDeleted",
)


def format_soql_datetime(value: datetime) -> str:
    """UTC ISO-8601 with milliseconds, as SOQL datetime literals expect."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def build_accounts_query(modified_since: datetime) -> str:
    """SOQL for accounts modified at or after ``modified_since``, oldest first."""
    return (
        f"SELECT {', '.join(ACCOUNT_FIELDS)} FROM Account "
        f"WHERE LastModifiedDate >= {format_soql_datetime(modified_since)} "
        "ORDER BY LastModifiedDate ASC"
    )


class SalesforceClient:
    """Client for the Salesforce REST API.

    Wires token management, the resilience pipeline and pagination over one
    shared ``httpx.AsyncClient``. A client passed in by the caller is left
    open on ``close()``.
    """

    def __init__(
        self,
        config: SalesforceConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.metrics = metrics
        self.logger = get_logger("salesforce.client")

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.api_base_url(),
            timeout=config.timeout_seconds,
        )

        resilience = config.resilience_config()
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=resilience.circuit_breaker_failure_threshold,
            recovery_timeout=resilience.circuit_breaker_open_duration,
            name="salesforce",
        )
        self.token_manager = TokenManager(config, self.http_client, clock=clock, metrics=metrics)
        self.pipeline = ResiliencePipeline(
            resilience,
            self.circuit_breaker,
            sleep=sleep,
            metrics=metrics,
        )
        self.executor = AuthenticatedRequestExecutor(
            self.http_client, self.token_manager, self.pipeline, metrics=metrics
        )
        self.query_executor = PaginatedQueryExecutor(self.executor, config.api_base_url(), metrics=metrics)

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "SalesforceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def get_accounts_modified_since(self, modified_since: datetime) -> List[SalesforceAccount]:
        """Fetch every account modified at or after ``modified_since``."""
        soql = build_accounts_query(modified_since)
        records = await self.query_executor.run_query(soql)

        try:
            accounts = [SalesforceAccount.model_validate(record) for record in records]
        except ValidationError as exc:
            self.logger.error("Account record failed validation", error=str(exc))
            raise MalformedResponseError(
                "Invalid account record",
                details={"error": str(exc)},
            ) from exc

        self.logger.info("Fetched modified accounts", count=len(accounts),
                         modified_since=modified_since.isoformat())
        return accounts

    async def get_account_by_id(self, salesforce_id: str) -> Optional[SalesforceAccount]:
        """Fetch one account by Salesforce id; ``None`` when it does not exist."""
        if not salesforce_id or not salesforce_id.strip():
            raise ValueError("Salesforce ID cannot be blank")

        response = await self.executor.send("GET", f"sobjects/Account/{salesforce_id.strip()}")
        if response.status_code == 404:
            self.logger.info("Account not found", salesforce_id=salesforce_id)
            return None

        ensure_success(response)
        try:
            return SalesforceAccount.model_validate_json(response.content)
        except ValidationError as exc:
            raise MalformedResponseError(
                "Invalid account record",
                details={"error": str(exc)},
                status_code=response.status_code,
                body=response.text,
            ) from exc

    async def check_connection(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            await self.query_executor.run_query("SELECT Id FROM Account LIMIT 1")
        except Exception as exc:
            self.logger.warning("Salesforce connection check failed", error=str(exc))
            return False
        self.logger.info("Salesforce connection check succeeded")
        return True

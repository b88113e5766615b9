"""
Cursor-based SOQL pagination.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from shared.errors import MalformedResponseError
from shared.logging import get_logger, request_context
from shared.metrics import MetricsCollector
from service_salesforce.app.adapters.request_executor import AuthenticatedRequestExecutor
from service_salesforce.app.domain.models import QueryPage
from service_salesforce.app.resilience.classifier import FailureClassification, ensure_success


@dataclass
class QueryCursor:
    """Position in a paginated result set."""

    next_page_token: Optional[str] = None
    exhausted: bool = False


class PaginatedQueryExecutor:
    """Drains a SOQL result set, page by page, into one ordered list.

    Either every page is fetched and the full list is returned, or the first
    failure propagates and nothing fetched so far is returned.
    """

    def __init__(
        self,
        executor: AuthenticatedRequestExecutor,
        api_base_url: str,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.executor = executor
        self.api_base_url = api_base_url.rstrip("/")
        self.metrics = metrics
        self.logger = get_logger("salesforce.query_executor")

    async def run_query(self, query: Union[str, QueryCursor]) -> List[Dict[str, Any]]:
        """Run a SOQL query (or resume a cursor) and return every record."""
        with request_context():
            if isinstance(query, QueryCursor):
                cursor = query
                if cursor.exhausted or not cursor.next_page_token:
                    return []
                page = await self._fetch_next_page(cursor.next_page_token)
            else:
                self.logger.debug("Executing SOQL query", soql=query)
                page = await self._fetch_first_page(query)
                cursor = QueryCursor()

            records: List[Dict[str, Any]] = []
            page_number = 1
            while True:
                records.extend(page.records)
                self._record_page(len(page.records))
                self.logger.info(
                    "Query page fetched",
                    page=page_number,
                    count=len(page.records),
                    total=len(records),
                    total_size=page.total_size,
                )

                self._advance(cursor, page)
                if cursor.exhausted:
                    break
                page = await self._fetch_next_page(cursor.next_page_token)
                page_number += 1

            self.logger.info("Query completed", pages=page_number, total=len(records))
            return records

    async def _fetch_first_page(self, soql: str) -> QueryPage:
        response = await self.executor.send("GET", "query", params={"q": soql})
        return self._parse_page(response)

    async def _fetch_next_page(self, next_records_url: str) -> QueryPage:
        response = await self.executor.send("GET", self.relative_path(next_records_url))
        return self._parse_page(response)

    def relative_path(self, next_records_url: str) -> str:
        """Turn ``nextRecordsUrl`` into a path relative to the API base URL.

        Salesforce returns it as ``/services/data/vXX.X/query/<locator>``;
        the absolute base URL and its path prefix are both stripped.
        """
        base_path = urlsplit(self.api_base_url).path
        path = next_records_url
        for prefix in (self.api_base_url, base_path):
            if prefix and path.startswith(prefix):
                path = path[len(prefix):]
                break
        return path.lstrip("/")

    @staticmethod
    def _advance(cursor: QueryCursor, page: QueryPage) -> None:
        if page.done:
            cursor.next_page_token = None
            cursor.exhausted = True
            return
        if not page.next_records_url:
            raise MalformedResponseError(
                "Query page not done but nextRecordsUrl missing",
                classification=FailureClassification.malformed("missing nextRecordsUrl"),
            )
        cursor.next_page_token = page.next_records_url

    @staticmethod
    def _parse_page(response: httpx.Response) -> QueryPage:
        ensure_success(response)
        try:
            return QueryPage.model_validate_json(response.content)
        except ValidationError as exc:
            raise MalformedResponseError(
                "Invalid query response",
                details={"error": str(exc)},
                status_code=response.status_code,
                body=response.text,
                classification=FailureClassification.malformed(
                    "invalid query response", status_code=response.status_code, body=response.text
                ),
            ) from exc

    def _record_page(self, record_count: int) -> None:
        if self.metrics:
            self.metrics.increment_counter("salesforce_pages_fetched_total")
            self.metrics.increment_counter("salesforce_records_fetched_total", amount=record_count)

"""
Adapters package for the Salesforce service.

Contains the HTTP-facing pieces built on top of the resilience pipeline:

- Bearer-authenticated request execution with one token renewal on 401
- Cursor-based SOQL pagination
- The SalesforceClient facade wiring everything over one HTTP client

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .request_executor import AuthenticatedRequestExecutor
from .query_executor import PaginatedQueryExecutor, QueryCursor
from .salesforce_client import SalesforceClient, build_accounts_query

__all__ = [
    "AuthenticatedRequestExecutor",
    "PaginatedQueryExecutor",
    "QueryCursor",
    "SalesforceClient",
    "build_accounts_query",
]

"""
Domain models for the Salesforce service.
"""

from .models import QueryPage, SalesforceAccount, SalesforceErrorEntry

__all__ = [
    "QueryPage",
    "SalesforceAccount",
    "SalesforceErrorEntry",
]

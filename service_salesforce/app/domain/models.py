"""
Wire models for the Salesforce REST API.

Field aliases match the Salesforce API names exactly; these models never leave
the service package.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Salesforce renders offsets as +0000, ISO 8601 parsers expect +00:00
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class QueryPage(BaseModel):
    """One page of a SOQL query result."""

    model_config = ConfigDict(populate_by_name=True)

    total_size: int = Field(alias="totalSize")
    done: bool
    next_records_url: Optional[str] = Field(default=None, alias="nextRecordsUrl")
    records: List[Dict[str, Any]] = Field(default_factory=list)


class SalesforceErrorEntry(BaseModel):
    """Element of the JSON array Salesforce returns on failure."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    error_code: str = Field(default="", alias="errorCode")
    fields: Optional[List[str]] = None


class SalesforceAccount(BaseModel):
    """Account record as returned by the REST API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="Id")
    name: str = Field(default="", alias="Name")
    type: Optional[str] = Field(default=None, alias="Type")
    industry: Optional[str] = Field(default=None, alias="Industry")
    annual_revenue: Optional[Decimal] = Field(default=None, alias="AnnualRevenue")
    number_of_employees: Optional[int] = Field(default=None, alias="NumberOfEmployees")
    billing_city: Optional[str] = Field(default=None, alias="BillingCity")
    billing_country: Optional[str] = Field(default=None, alias="BillingCountry")
    last_modified_date: datetime = Field(alias="LastModifiedDate")
    created_date: datetime = Field(alias="CreatedDate")
    is_deleted: bool = Field(default=False, alias="IsDeleted")

    @field_validator("last_modified_date", "created_date", mode="before")
    @classmethod
    def _normalize_offset(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _COMPACT_OFFSET.sub(r"\1:\2", value)
        return value

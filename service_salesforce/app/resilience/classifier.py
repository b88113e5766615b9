"""
Maps a Salesforce response to a failure classification.

Classification is data: the resilience pipeline branches on ``FailureKind``
rather than on exception types. Exceptions are only built at the edge, when a
failed response is handed back to a caller (``ensure_success``).
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Mapping, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from shared.errors import (
    AuthenticationError,
    ExternalServiceError,
    InvalidRequestError,
    MalformedResponseError,
    RateLimitError,
    TransientServiceError,
)
from service_salesforce.app.domain.models import SalesforceErrorEntry

DEFAULT_RETRY_AFTER_SECONDS = 60


class FailureKind(Enum):
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class FailureClassification:
    """Why a single response failed."""

    kind: FailureKind
    status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    has_retry_hint: bool = False
    error_code: Optional[str] = None
    message: Optional[str] = None
    fields: Tuple[str, ...] = ()
    body: Optional[str] = None
    reason: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.kind in (FailureKind.RATE_LIMITED, FailureKind.TRANSIENT)

    @property
    def counts_toward_breaker(self) -> bool:
        return self.kind is FailureKind.TRANSIENT

    @classmethod
    def malformed(cls, reason: str, status_code: Optional[int] = None,
                  body: Optional[str] = None) -> "FailureClassification":
        return cls(FailureKind.MALFORMED, status_code=status_code, body=body, reason=reason)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Seconds to wait according to a ``Retry-After`` value.

    Accepts delta-seconds or an HTTP-date. Returns None when the value is
    missing or unparseable, or when the date is not in the future.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return int(value)

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delta = (retry_at - now).total_seconds()
    if delta <= 0:
        return None
    return max(1, int(delta))


def _parse_error_envelope(body: str) -> Optional[SalesforceErrorEntry]:
    """First entry of the ``[{message, errorCode, fields}]`` error array, if any."""
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
        return None
    try:
        return SalesforceErrorEntry.model_validate(payload[0])
    except ValidationError:
        return None


def classify(status_code: int, headers: Mapping[str, str], body: Union[str, bytes, None],
             now: Optional[datetime] = None) -> Optional[FailureClassification]:
    """Classify a response; ``None`` means it succeeded."""
    if 200 <= status_code < 300:
        return None

    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    body = body or ""

    entry = _parse_error_envelope(body)
    error_code: Optional[str] = None
    message: Optional[str] = None
    fields: Tuple[str, ...] = ()
    if entry is not None:
        error_code = entry.error_code or None
        message = entry.message or None
        fields = tuple(entry.fields or ())

    if status_code == 401:
        return FailureClassification(FailureKind.AUTHENTICATION, status_code=status_code,
                                     error_code=error_code, message=message, body=body)

    if status_code == 429:
        hinted = parse_retry_after(_header(headers, "Retry-After"), now=now)
        return FailureClassification(
            FailureKind.RATE_LIMITED,
            status_code=status_code,
            retry_after_seconds=DEFAULT_RETRY_AFTER_SECONDS if hinted is None else hinted,
            has_retry_hint=hinted is not None,
            error_code=error_code or "REQUEST_LIMIT_EXCEEDED",
            message=message,
            body=body,
        )

    if status_code >= 500:
        return FailureClassification(FailureKind.TRANSIENT, status_code=status_code,
                                     error_code=error_code, message=message, body=body)

    # 400 carries the query/validation error; everything else is generic
    return FailureClassification(FailureKind.NON_RETRYABLE, status_code=status_code,
                                 error_code=error_code, message=message, fields=fields, body=body)


def classify_response(response: httpx.Response, now: Optional[datetime] = None) -> Optional[FailureClassification]:
    return classify(response.status_code, response.headers, response.content, now=now)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def to_exception(classification: FailureClassification) -> ExternalServiceError:
    """Build the caller-facing exception for a classification."""
    kind = classification.kind
    detail = classification.message or classification.reason or f"HTTP {classification.status_code}"
    common = dict(
        status_code=classification.status_code,
        error_code=classification.error_code,
        body=classification.body,
        classification=classification,
    )

    if kind is FailureKind.AUTHENTICATION:
        return AuthenticationError(f"Authentication failed: {detail}", **common)
    if kind is FailureKind.RATE_LIMITED:
        return RateLimitError(
            f"Rate limit exceeded: {detail}",
            retry_after_seconds=(DEFAULT_RETRY_AFTER_SECONDS if classification.retry_after_seconds is None
                                 else classification.retry_after_seconds),
            **common
        )
    if kind is FailureKind.TRANSIENT:
        return TransientServiceError(f"Server error: {detail}", **common)
    if kind is FailureKind.MALFORMED:
        return MalformedResponseError(f"Malformed response: {detail}", **common)

    details = {"fields": list(classification.fields)} if classification.fields else None
    if classification.status_code == 400:
        return InvalidRequestError(f"Invalid query: {detail}", details, **common)
    return InvalidRequestError(f"Unexpected error: {detail}", details, **common)


def ensure_success(response: httpx.Response) -> None:
    """Raise the classified exception for a failed response."""
    classification = classify_response(response)
    if classification is not None:
        raise to_exception(classification)


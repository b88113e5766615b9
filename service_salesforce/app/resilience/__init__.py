"""
Resilience package for the Salesforce service.

- classifier: maps responses to failure kinds and caller-facing errors
- pipeline: rate-limit wait, retry and circuit breaker around each call
"""

from .classifier import FailureClassification, FailureKind, classify, classify_response, ensure_success
from .pipeline import ResiliencePipeline

__all__ = [
    "FailureClassification",
    "FailureKind",
    "classify",
    "classify_response",
    "ensure_success",
    "ResiliencePipeline",
]

"""
Salesforce connection settings.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from shared.config import BaseConfig


@dataclass(frozen=True)
class ResilienceConfig:
    """Immutable knobs of the resilience pipeline."""

    max_retries: int = 3
    circuit_breaker_open_duration: float = 30.0
    base_backoff: float = 1.0
    circuit_breaker_failure_threshold: int = 5


class SalesforceConfig(BaseConfig):
    """Salesforce REST API configuration, bound from ``SALESFORCE_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="SALESFORCE_")

    instance_url: str
    token_endpoint: Optional[str] = Field(default=None)
    client_id: str
    client_secret: str
    username: str
    password: str
    security_token: Optional[str] = Field(default=None)
    api_version: str = Field(default="v58.0")

    timeout_seconds: float = Field(default=30.0)
    max_retries: int = Field(default=3)
    circuit_breaker_duration_seconds: float = Field(default=30.0)
    circuit_breaker_failure_threshold: int = Field(default=5)
    base_backoff_seconds: float = Field(default=1.0)

    def api_base_url(self) -> str:
        """e.g. https://yourinstance.my.salesforce.com/services/data/v58.0"""
        return f"{self.instance_url.rstrip('/')}/services/data/{self.api_version}"

    def token_url(self) -> str:
        if self.token_endpoint:
            return self.token_endpoint
        return f"{self.instance_url.rstrip('/')}/services/oauth2/token"

    def full_password(self) -> str:
        """Password with the security token appended, as the password grant expects."""
        if not self.security_token:
            return self.password
        return self.password + self.security_token

    def resilience_config(self) -> ResilienceConfig:
        return ResilienceConfig(
            max_retries=self.max_retries,
            circuit_breaker_open_duration=self.circuit_breaker_duration_seconds,
            base_backoff=self.base_backoff_seconds,
            circuit_breaker_failure_threshold=self.circuit_breaker_failure_threshold,
        )

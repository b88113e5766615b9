"""
Salesforce service entry point.

Loads ``SALESFORCE_*`` settings, configures logging and metrics, and runs a
connection check against the configured org.
"""

import asyncio
import sys
from typing import Optional

from prometheus_client import CollectorRegistry

from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector
from service_salesforce.app.adapters.salesforce_client import SalesforceClient
from service_salesforce.app.config import SalesforceConfig

SERVICE_NAME = "salesforce"


class SalesforceService:
    """Owns the configured client and its ambient setup."""

    def __init__(self, config: Optional[SalesforceConfig] = None,
                 registry: Optional[CollectorRegistry] = None):
        self.config = config or SalesforceConfig()
        configure_logging(SERVICE_NAME, self.config.log_level)
        self.logger = get_logger(f"{SERVICE_NAME}.service")
        self.metrics = get_metrics_collector(SERVICE_NAME, registry)

    def create_client(self, **kwargs) -> SalesforceClient:
        return SalesforceClient(self.config, metrics=self.metrics, **kwargs)

    async def check(self, **kwargs) -> bool:
        async with self.create_client(**kwargs) as client:
            healthy = await client.check_connection()
        self.logger.info("Connection check finished", healthy=healthy, env=self.config.env,
                         instance_url=self.config.instance_url)
        return healthy

    def run(self) -> int:
        return 0 if asyncio.run(self.check()) else 1


def main() -> None:
    sys.exit(SalesforceService().run())


if __name__ == "__main__":
    main()

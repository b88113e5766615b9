"""
Salesforce REST API access for the Salesforce Access Layer.

Every outbound call is authenticated with a cached OAuth2 token and passes
through the resilience pipeline:
- Rate limiting: waits out 429 responses as instructed by Retry-After
- Retries: exponential backoff with jitter for transient and network failures
- Circuit breaking: fails fast while Salesforce keeps failing

Structure:
- app.config: Connection and resilience settings.
- app.auth: OAuth2 token lifecycle.
- app.resilience: Failure classification and the resilience pipeline.
- app.adapters: Request execution, pagination and the client facade.
- app.domain: Wire models.
"""

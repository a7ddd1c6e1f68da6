"""
Connector error taxonomy

ProviderAPIError is a transport error raised by the clients; the rest are
run-fatal and abort a connector's sync run.
"""
from typing import Any, Optional


class ConnectorError(Exception):
    """Base class for connector failures."""


class ProviderAPIError(ConnectorError):
    """Non-2xx response from a provider API."""

    def __init__(self, provider: str, status: int, body: Any = None, url: Optional[str] = None):
        self.provider = provider
        self.status = status
        self.body = body
        self.url = url
        detail = body if isinstance(body, str) else repr(body)
        if detail and len(detail) > 500:
            detail = detail[:500] + "..."
        super().__init__(f"{provider} API error {status}: {detail}")


class CredentialsError(ConnectorError):
    """Credentials missing or malformed for the connector type."""


class PrerequisiteStageError(ConnectorError):
    """A stage every later stage depends on failed."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(message)


class SyncTimeoutError(ConnectorError):
    """A sync run exceeded its wall-clock deadline."""


class UnsupportedConnectorError(ConnectorError):
    """No implementation registered for the connector type."""

"""
Base HTTP client for provider APIs

Handles auth headers (via subclasses), per-request timeouts, retry with
exponential backoff for transient failures, and a per-provider cap on
concurrent outbound requests. Pagination is exposed uniformly through
ListParams in and Page out.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from bizos.config import get_settings
from bizos.connectors.errors import ProviderAPIError
from bizos.utils.logger import log
from bizos.utils.retry import (
    DEFAULT_RETRYABLE_EXCEPTIONS,
    RetryStats,
    calculate_backoff,
    is_retryable_error,
)

settings = get_settings()

RETRYABLE_EXCEPTIONS = DEFAULT_RETRYABLE_EXCEPTIONS + (aiohttp.ClientConnectionError,)


@dataclass
class ListParams:
    """Query for one page of a provider collection."""
    limit: int = 250
    cursor: Optional[str] = None
    created_at_min: Optional[datetime] = None
    created_at_max: Optional[datetime] = None
    updated_at_min: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Page:
    """
    One page of results.

    has_more is set only when the provider returns an authoritative
    end-of-collection marker; None means the caller applies the
    full-page-implies-more rule.
    """
    items: List[Dict[str, Any]]
    next_cursor: Optional[str] = None
    has_more: Optional[bool] = None


class ProviderLimiter:
    """Caps concurrent outbound requests per provider."""

    def __init__(self, max_concurrency: Optional[int] = None):
        self.max_concurrency = max_concurrency or settings.provider_max_concurrency
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def for_provider(self, provider: str) -> asyncio.Semaphore:
        if provider not in self._semaphores:
            self._semaphores[provider] = asyncio.Semaphore(self.max_concurrency)
        return self._semaphores[provider]


class BaseClient:
    """Base class for provider API clients"""

    PROVIDER = "base"

    # Retry configuration (can be overridden by subclasses)
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 1.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    def __init__(self, limiter: Optional[ProviderLimiter] = None, timeout: Optional[float] = None):
        self.limiter = limiter or ProviderLimiter()
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.http_timeout_seconds)
        self.request_count = 0
        self.retry_stats = RetryStats()

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def test_connection(self) -> bool:
        """Minimal authenticated call. Never raises."""
        try:
            await self._ping()
            return True
        except Exception as e:
            log.warning(f"{self.PROVIDER} connection test failed: {e}")
            return False

    async def _ping(self) -> Any:
        raise NotImplementedError

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Issue one request with retry.

        Returns parsed JSON. Raises ProviderAPIError on a non-2xx response
        once retries (for 429/5xx) are exhausted.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.RETRY_MAX_ATTEMPTS + 1):
            try:
                result = await self._send(method, url, params=params, json=json, data=data, headers=headers)
                self.retry_stats.mark_success()
                return result

            except Exception as e:
                last_error = e

                if attempt >= self.RETRY_MAX_ATTEMPTS or not is_retryable_error(e, RETRYABLE_EXCEPTIONS):
                    self.retry_stats.mark_failure(e)
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.RETRY_BASE_DELAY,
                    max_delay=self.RETRY_MAX_DELAY
                )
                self.retry_stats.record_retry(e, delay)

                log.warning(
                    f"{self.PROVIDER} {method} {url} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise last_error if last_error else RuntimeError("Retry exhausted")

    async def _send(self, method, url, params=None, json=None, data=None, headers=None) -> Any:
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)

        async with self.limiter.for_provider(self.PROVIDER):
            self.request_count += 1
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    url,
                    params=_clean_params(params),
                    json=json,
                    data=data,
                    headers=request_headers,
                ) as response:
                    if response.status >= 400:
                        body = await _read_body(response)
                        raise ProviderAPIError(self.PROVIDER, response.status, body, url=url)
                    if response.status == 204:
                        return {}
                    return await response.json(content_type=None)


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Drop None values; aiohttp only accepts str/int/float query values."""
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value if isinstance(value, (str, int, float)) else str(value)
    return cleaned


async def _read_body(response: aiohttp.ClientResponse) -> Any:
    try:
        return await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return await response.text()


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for provider filters; naive datetimes are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.strftime("%Y-%m-%dT%H:%M:%S") + "Z"
    return value.isoformat()

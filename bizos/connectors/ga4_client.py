"""
Google Analytics 4 Data API client

runReport pages with limit/offset; rowCount in each response is the total
number of rows, so the client knows exactly when the report is exhausted.
"""
from typing import Any, Dict, List, Optional

from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter
from bizos.connectors.credentials import GA4Credentials

DATA_API_BASE = "https://analyticsdata.googleapis.com/v1beta"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
PAGE_SIZE = 10000


class GA4Client(BaseClient):
    PROVIDER = "ga4"

    def __init__(self, credentials: GA4Credentials, limiter: Optional[ProviderLimiter] = None):
        super().__init__(limiter)
        self.credentials = credentials
        self.access_token = credentials.access_token

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    @property
    def report_url(self) -> str:
        return f"{DATA_API_BASE}/properties/{self.credentials.property_id}:runReport"

    async def _ping(self):
        return await self._request(
            "POST",
            self.report_url,
            json={
                "dateRanges": [{"startDate": "yesterday", "endDate": "today"}],
                "metrics": [{"name": "sessions"}],
                "limit": 1,
            },
        )

    async def run_report(self, request: Dict[str, Any], params: ListParams) -> Page:
        """
        Run one page of a report.

        request holds dateRanges/dimensions/metrics; params.cursor is the
        row offset as a string.
        """
        offset = int(params.cursor or 0)
        body = dict(request)
        body["limit"] = params.limit
        body["offset"] = offset
        data = await self._request("POST", self.report_url, json=body)
        rows: List[Dict[str, Any]] = data.get("rows") or []
        total = int(data.get("rowCount") or 0)
        next_offset = offset + len(rows)
        has_more = bool(rows) and next_offset < total
        return Page(items=rows, next_cursor=str(next_offset) if has_more else None, has_more=has_more)

    async def refresh_access_token(self, client_id: str, client_secret: str) -> Dict[str, Any]:
        """Exchange the refresh token for a new access token ({access_token, expires_in})."""
        data = await self._request(
            "POST",
            OAUTH_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": self.credentials.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        self.access_token = data.get("access_token", self.access_token)
        return data

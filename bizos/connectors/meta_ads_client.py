"""
Meta Marketing (Graph) API client

access_token travels as a query parameter. Collections page with
paging.cursors.after; paging.next being absent is the authoritative end.
"""
import json
from datetime import date
from typing import Any, Dict, Optional

from bizos.config import get_settings
from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter
from bizos.connectors.credentials import MetaAdsCredentials

settings = get_settings()

PAGE_SIZE = 500

ACCOUNT_FIELDS = ",".join([
    "id", "account_id", "name", "currency", "timezone_name",
    "account_status", "amount_spent", "balance",
])

CAMPAIGN_FIELDS = ",".join([
    "id", "account_id", "name", "status", "effective_status", "objective",
    "buying_type", "budget_remaining", "daily_budget", "lifetime_budget",
    "start_time", "stop_time", "created_time", "updated_time",
])

ADSET_FIELDS = ",".join([
    "id", "account_id", "campaign_id", "name", "status", "effective_status",
    "billing_event", "optimization_goal", "bid_strategy", "bid_amount",
    "daily_budget", "lifetime_budget", "budget_remaining", "start_time",
    "end_time", "targeting", "created_time", "updated_time",
])

AD_FIELDS = ",".join([
    "id", "account_id", "adset_id", "campaign_id", "name", "status",
    "effective_status", "creative{id,name,object_story_spec,thumbnail_url,image_url}",
    "created_time", "updated_time",
])

INSIGHTS_FIELDS = ",".join([
    "account_id", "campaign_id", "adset_id", "ad_id", "date_start", "date_stop",
    "impressions", "clicks", "spend", "reach", "frequency", "actions",
    "action_values", "cpc", "cpm", "ctr", "attribution_setting",
])


class MetaAdsClient(BaseClient):
    PROVIDER = "meta_ads"

    def __init__(self, credentials: MetaAdsCredentials, limiter: Optional[ProviderLimiter] = None,
                 graph_version: Optional[str] = None):
        super().__init__(limiter)
        self.credentials = credentials
        self.base_url = f"https://graph.facebook.com/{graph_version or settings.meta_graph_version}"
        account_id = credentials.ad_account_id
        self.account_path = account_id if account_id.startswith("act_") else f"act_{account_id}"

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = dict(params or {})
        query["access_token"] = self.credentials.access_token
        return await self._request("GET", f"{self.base_url}/{path}", params=query)

    async def _ping(self):
        return await self._get("me", {"fields": "id"})

    async def _list(self, edge: str, fields: str, params: ListParams, extra: Optional[Dict[str, Any]] = None) -> Page:
        query: Dict[str, Any] = {"fields": fields, "limit": params.limit, "after": params.cursor}
        if extra:
            query.update(extra)
        query.update(params.extra)
        data = await self._get(f"{self.account_path}/{edge}", query)
        paging = data.get("paging") or {}
        next_cursor = (paging.get("cursors") or {}).get("after")
        has_more = bool(paging.get("next"))
        return Page(items=data.get("data", []), next_cursor=next_cursor if has_more else None, has_more=has_more)

    async def get_ad_account(self) -> Dict[str, Any]:
        return await self._get(self.account_path, {"fields": ACCOUNT_FIELDS})

    async def list_campaigns(self, params: ListParams) -> Page:
        return await self._list("campaigns", CAMPAIGN_FIELDS, params)

    async def list_ad_sets(self, params: ListParams) -> Page:
        return await self._list("adsets", ADSET_FIELDS, params)

    async def list_ads(self, params: ListParams) -> Page:
        return await self._list("ads", AD_FIELDS, params)

    async def list_insights(self, params: ListParams) -> Page:
        """Ad-level daily insights over [created_at_min, created_at_max]."""
        since = params.created_at_min.date() if params.created_at_min else date.today()
        until = params.created_at_max.date() if params.created_at_max else date.today()
        return await self._list(
            "insights",
            INSIGHTS_FIELDS,
            params,
            extra={
                "level": "ad",
                "time_increment": 1,
                "time_range": json.dumps({"since": since.isoformat(), "until": until.isoformat()}),
            },
        )

    async def exchange_token(self, app_id: str, app_secret: str) -> Dict[str, Any]:
        """Trade the current token for a long-lived one ({access_token, expires_in})."""
        return await self._request(
            "GET",
            f"{self.base_url}/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app_id,
                "client_secret": app_secret,
                "fb_exchange_token": self.credentials.access_token,
            },
        )

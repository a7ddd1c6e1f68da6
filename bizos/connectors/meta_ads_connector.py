"""
Meta Ads connector

Stage order is ad account -> campaigns -> ad sets -> ads -> insights. The
ad account is a hard prerequisite: if it cannot be fetched nothing else is
written. Insights are pulled per ad per day over a date window (the last
30 days on a full sync, since the last sync on an incremental one).
"""
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bizos.config import get_settings
from bizos.connectors.base_client import ListParams, ProviderLimiter
from bizos.connectors.base_connector import BaseConnector, SyncResult, SyncStage
from bizos.connectors.credentials import MetaAdsCredentials
from bizos.connectors.meta_ads_client import PAGE_SIZE, MetaAdsClient
from bizos.models.ads import Ad, AdAccount, AdCampaign, AdPerformance, AdSet
from bizos.models.connector import ConnectorType
from bizos.transformers import meta_ads as meta_transformer
from bizos.utils.logger import log

settings = get_settings()

SOURCE = meta_transformer.SOURCE
INSIGHTS_LOOKBACK_DAYS = 30
TOKEN_REFRESH_WINDOW = timedelta(days=7)


class MetaAdsConnector(BaseConnector):
    CONNECTOR_TYPE = ConnectorType.META_ADS
    SOURCE = SOURCE
    PAGE_SIZE = PAGE_SIZE

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.ad_account_id: Optional[str] = None

    def build_client(self, credentials: MetaAdsCredentials, limiter: Optional[ProviderLimiter]) -> MetaAdsClient:
        return MetaAdsClient(credentials, limiter=limiter, graph_version=self.options.get("graph_version"))

    def stages(self) -> List[SyncStage]:
        return [
            SyncStage("ad_account", self.sync_ad_account, prerequisite=True),
            SyncStage("campaign", self.sync_campaigns),
            SyncStage("ad_set", self.sync_ad_sets),
            SyncStage("ad", self.sync_ads),
            SyncStage("insights", self.sync_insights),
        ]

    async def refresh_credentials(self) -> Optional[MetaAdsCredentials]:
        expires_at = self.credentials.token_expires_at
        if expires_at is None or not settings.meta_app_id or not settings.meta_app_secret:
            return None
        if expires_at.tzinfo is not None:
            expires_at = expires_at.replace(tzinfo=None) - (expires_at.utcoffset() or timedelta(0))
        if expires_at - datetime.utcnow() > TOKEN_REFRESH_WINDOW:
            return None

        log.info(f"meta_ads: exchanging token for connector {self.connector_id} (expires {expires_at})")
        data = await self.client.exchange_token(settings.meta_app_id, settings.meta_app_secret)
        token = data.get("access_token")
        if not token:
            return None
        expires_in = data.get("expires_in")
        new_expiry = datetime.utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        self.credentials = replace(self.credentials, access_token=token, token_expires_at=new_expiry)
        self.client.credentials = self.credentials
        return self.credentials

    def list_params(self, since: Optional[datetime] = None, **extra) -> ListParams:
        # Structure endpoints have no creation filter; the window only bounds insights
        return ListParams(limit=self.PAGE_SIZE, extra=extra)

    async def sync_ad_account(self, since: Optional[datetime], result: SyncResult):
        account = await self.client.get_ad_account()
        entity = meta_transformer.transform_ad_account(account, self.workspace_id)
        entity["last_sync_at"] = datetime.utcnow()
        self.ad_account_id = self.reconciler.upsert(AdAccount, entity).id
        result.count("ad_accounts")

    async def sync_campaigns(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "campaigns", AdCampaign, self.client.list_campaigns, self.list_params(since),
            self._campaign_entity,
        )

    async def sync_ad_sets(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "ad_sets", AdSet, self.client.list_ad_sets, self.list_params(since),
            self._ad_set_entity,
        )

    async def sync_ads(self, since: Optional[datetime], result: SyncResult):
        await self.upsert_pages(
            result, "ads", Ad, self.client.list_ads, self.list_params(since),
            self._ad_entity,
        )

    async def sync_insights(self, since: Optional[datetime], result: SyncResult):
        now = datetime.utcnow()
        params = ListParams(
            limit=self.PAGE_SIZE,
            created_at_min=since or now - timedelta(days=INSIGHTS_LOOKBACK_DAYS),
            created_at_max=now,
        )
        await self.upsert_pages(
            result, "insights", AdPerformance, self.client.list_insights, params,
            self._insight_entity,
        )

    def _campaign_entity(self, campaign: Dict[str, Any]) -> Dict[str, Any]:
        entity = meta_transformer.transform_campaign(campaign, self.workspace_id)
        entity["ad_account_id"] = self.ad_account_id
        return entity

    def _ad_set_entity(self, ad_set: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        campaign_id = self.reconciler.find_id(AdCampaign, self.workspace_id, SOURCE, ad_set.get("campaign_id"))
        if campaign_id is None:
            return None
        entity = meta_transformer.transform_ad_set(ad_set, self.workspace_id)
        entity["campaign_id"] = campaign_id
        return entity

    def _ad_entity(self, ad: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ad_set_id = self.reconciler.find_id(AdSet, self.workspace_id, SOURCE, ad.get("adset_id"))
        if ad_set_id is None:
            return None
        entity = meta_transformer.transform_ad(ad, self.workspace_id)
        entity["ad_set_id"] = ad_set_id
        return entity

    def _insight_entity(self, insight: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not insight.get("ad_id") or not insight.get("date_start"):
            return None
        refs = meta_transformer.insight_refs(insight)
        entity = meta_transformer.transform_insight(insight, self.workspace_id)
        entity["ad_account_id"] = self.ad_account_id
        entity["campaign_id"] = self.reconciler.find_id(AdCampaign, self.workspace_id, SOURCE, refs["campaign"])
        entity["ad_set_id"] = self.reconciler.find_id(AdSet, self.workspace_id, SOURCE, refs["ad_set"])
        entity["ad_id"] = self.reconciler.find_id(Ad, self.workspace_id, SOURCE, refs["ad"])
        return entity

"""
GA4 connector

Pulls three daily reports (sessions, traffic sources, events). The reports
do not depend on each other, so one failing does not stop the others.
"""
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import List, Optional

from bizos.config import get_settings
from bizos.connectors.base_client import ListParams, ProviderLimiter
from bizos.connectors.base_connector import BaseConnector, SyncResult, SyncStage
from bizos.connectors.credentials import GA4Credentials
from bizos.connectors.ga4_client import PAGE_SIZE, GA4Client
from bizos.models.connector import ConnectorType
from bizos.models.ga4 import GA4Event, GA4Session, GA4TrafficSource
from bizos.transformers import ga4 as ga4_transformer
from bizos.utils.logger import log

settings = get_settings()

DEFAULT_LOOKBACK_DAYS = 30
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class GA4Connector(BaseConnector):
    CONNECTOR_TYPE = ConnectorType.GA4
    SOURCE = ga4_transformer.SOURCE
    PAGE_SIZE = PAGE_SIZE

    def build_client(self, credentials: GA4Credentials, limiter: Optional[ProviderLimiter]) -> GA4Client:
        return GA4Client(credentials, limiter=limiter)

    @property
    def property_id(self) -> str:
        return self.credentials.property_id

    def stages(self) -> List[SyncStage]:
        return [
            SyncStage("session", self.sync_sessions),
            SyncStage("traffic_source", self.sync_traffic_sources),
            SyncStage("event", self.sync_events),
        ]

    async def refresh_credentials(self) -> Optional[GA4Credentials]:
        expires_at = self.credentials.expires_at
        if not self.credentials.refresh_token or expires_at is None:
            return None
        if not settings.google_client_id or not settings.google_client_secret:
            log.warning(f"ga4: token for connector {self.connector_id} needs refresh but Google OAuth is not configured")
            return None
        if expires_at.tzinfo is not None:
            expires_at = expires_at.replace(tzinfo=None) - (expires_at.utcoffset() or timedelta(0))
        if expires_at - datetime.utcnow() > TOKEN_REFRESH_MARGIN:
            return None

        log.info(f"ga4: refreshing access token for connector {self.connector_id}")
        data = await self.client.refresh_access_token(settings.google_client_id, settings.google_client_secret)
        token = data.get("access_token")
        if not token:
            return None
        expires_in = int(data.get("expires_in") or 3600)
        self.credentials = replace(
            self.credentials,
            access_token=token,
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in),
        )
        return self.credentials

    def report_window(self, since: Optional[datetime]):
        end = date.today()
        start = since.date() if since else end - timedelta(days=DEFAULT_LOOKBACK_DAYS)
        return start.isoformat(), end.isoformat()

    async def _sync_report(self, since, result: SyncResult, key: str, model, dimensions, metrics, transform):
        start_date, end_date = self.report_window(since)
        request = ga4_transformer.report_request(dimensions, metrics, start_date, end_date)

        async def fetch(params: ListParams):
            return await self.client.run_report(request, params)

        await self.upsert_pages(
            result, key, model, fetch, ListParams(limit=self.PAGE_SIZE),
            lambda row: transform(row, self.workspace_id, self.property_id),
        )

    async def sync_sessions(self, since: Optional[datetime], result: SyncResult):
        await self._sync_report(
            since, result, "sessions", GA4Session,
            ga4_transformer.SESSION_DIMENSIONS, ga4_transformer.SESSION_METRICS,
            ga4_transformer.transform_session_row,
        )

    async def sync_traffic_sources(self, since: Optional[datetime], result: SyncResult):
        await self._sync_report(
            since, result, "traffic_sources", GA4TrafficSource,
            ga4_transformer.TRAFFIC_DIMENSIONS, ga4_transformer.TRAFFIC_METRICS,
            ga4_transformer.transform_traffic_row,
        )

    async def sync_events(self, since: Optional[datetime], result: SyncResult):
        await self._sync_report(
            since, result, "events", GA4Event,
            ga4_transformer.EVENT_DIMENSIONS, ga4_transformer.EVENT_METRICS,
            ga4_transformer.transform_event_row,
        )

"""
Base connector class for all data sources

A connector owns one provider client and drives it through an ordered list
of stages. Each stage pages through one provider collection, transforms the
records and hands them to the upsert reconciler. Stage failures are recorded
and the run continues, unless the stage is a prerequisite for everything
after it.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Type
import time

from sqlalchemy.orm import Session

from bizos.connectors.base_client import BaseClient, ListParams, Page, ProviderLimiter
from bizos.connectors.credentials import Credentials
from bizos.connectors.errors import PrerequisiteStageError
from bizos.models.connector import ConnectorType
from bizos.services.upsert import UpsertReconciler
from bizos.utils.logger import log

FetchPage = Callable[[ListParams], Awaitable[Page]]


@dataclass
class SyncResult:
    """Outcome of one full or incremental sync run"""
    success: bool = True
    records_processed: Dict[str, int] = field(default_factory=dict)
    errors: List[Dict[str, str]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def count(self, key: str, amount: int = 1):
        self.records_processed[key] = self.records_processed.get(key, 0) + amount

    def add_error(self, error_type: str, message: str):
        self.errors.append({"type": error_type, "message": message})

    def finish(self) -> "SyncResult":
        self.completed_at = datetime.utcnow()
        if self.errors:
            self.success = False
        return self

    @property
    def error_message(self) -> Optional[str]:
        if not self.errors:
            return None
        return "; ".join(f"{e['type']}: {e['message']}" for e in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "records_processed": dict(self.records_processed),
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class WebhookOutcome:
    """What a webhook did to the store: upserted, updated, deleted, acknowledged or ignored."""
    action: str
    object_id: Optional[str] = None


@dataclass
class SyncStage:
    name: str
    run: Callable[[Optional[datetime], SyncResult], Awaitable[None]]
    prerequisite: bool = False

    @property
    def error_type(self) -> str:
        return f"{self.name}_sync_error"


class BaseConnector(ABC):
    """Base class for all provider connectors"""

    CONNECTOR_TYPE: ConnectorType
    SOURCE: str = ""
    PAGE_SIZE = 250

    # event type -> handler method name
    WEBHOOK_ROUTES: Dict[str, str] = {}

    def __init__(
        self,
        workspace_id: str,
        credentials: Credentials,
        db: Session,
        client: Optional[BaseClient] = None,
        limiter: Optional[ProviderLimiter] = None,
        connector_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.workspace_id = workspace_id
        self.credentials = credentials
        self.db = db
        self.connector_id = connector_id
        self.options = options or {}
        self.client = client or self.build_client(credentials, limiter)
        self.reconciler = UpsertReconciler(db)

    @property
    def name(self) -> str:
        return self.CONNECTOR_TYPE.value

    @abstractmethod
    def build_client(self, credentials: Credentials, limiter: Optional[ProviderLimiter]) -> BaseClient:
        """Construct the provider client for these credentials"""

    @abstractmethod
    def stages(self) -> List[SyncStage]:
        """Ordered sync stages; parents before children"""

    async def test_connection(self) -> bool:
        return await self.client.test_connection()

    async def refresh_credentials(self) -> Optional[Credentials]:
        """
        Renew expiring tokens before a run.

        Returns the new credentials when they changed, so the caller can
        persist them; None when nothing was refreshed.
        """
        return None

    async def full_sync(self) -> SyncResult:
        return await self._run_sync(None)

    async def incremental_sync(self, since: datetime) -> SyncResult:
        return await self._run_sync(since)

    async def _run_sync(self, since: Optional[datetime]) -> SyncResult:
        mode = "incremental" if since else "full"
        log.info(f"Starting {self.name} {mode} sync for workspace {self.workspace_id}"
                 + (f" since {since.isoformat()}" if since else ""))
        start_time = time.time()
        result = SyncResult()

        try:
            for stage in self.stages():
                await self._run_stage(stage, since, result)
        except PrerequisiteStageError as e:
            log.error(f"{self.name} sync aborted at {e.stage}: {e}")

        result.finish()
        elapsed = time.time() - start_time
        if result.success:
            log.info(f"{self.name} {mode} sync completed in {elapsed:.2f}s: {result.records_processed}")
        else:
            log.warning(
                f"{self.name} {mode} sync finished with {len(result.errors)} error(s) in {elapsed:.2f}s: "
                f"{result.error_message}"
            )

        stats = getattr(self.client, "retry_stats", None)
        if stats is not None and (stats.retries or stats.gave_up):
            log.info(f"{self.name} request retries: {stats.to_dict()}")
        return result

    async def _run_stage(self, stage: SyncStage, since: Optional[datetime], result: SyncResult):
        """Run one stage; record its failure and keep going unless it is a prerequisite."""
        try:
            await stage.run(since, result)
        except Exception as e:
            log.error(f"{self.name} stage '{stage.name}' failed: {e}")
            result.add_error(stage.error_type, str(e))
            if stage.prerequisite:
                raise PrerequisiteStageError(stage.name, str(e)) from e

    async def paginate(self, fetch: FetchPage, params: ListParams) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield successive pages of items.

        An authoritative end marker (Page.has_more) decides when it is set;
        otherwise a full page means there may be more.
        """
        pages = 0
        while True:
            page = await fetch(params)
            pages += 1
            yield page.items

            if page.has_more is not None:
                more = page.has_more
            else:
                more = len(page.items) >= params.limit
            if not more or not page.next_cursor:
                break
            params = replace(params, cursor=page.next_cursor)

        log.debug(f"{self.name}: fetched {pages} page(s)")

    def list_params(self, since: Optional[datetime] = None, **extra) -> ListParams:
        """Paging params with the incremental lower bound applied, if any."""
        return ListParams(limit=self.PAGE_SIZE, created_at_min=since, extra=extra)

    async def upsert_pages(
        self,
        result: SyncResult,
        key: str,
        model: Type,
        fetch: FetchPage,
        params: ListParams,
        transform: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    ):
        """Page through a collection and upsert every record that transforms to an entity."""
        async for items in self.paginate(fetch, params):
            for record in items:
                entity = transform(record)
                if entity is None:
                    result.count(f"skipped_{key}")
                    continue
                self.reconciler.upsert(model, entity)
                result.count(key)

    async def process_webhook(self, event_type: str, payload: Dict[str, Any]) -> WebhookOutcome:
        """Route a verified webhook to its handler; unknown event types are ignored."""
        handler_name = self.WEBHOOK_ROUTES.get(event_type)
        if handler_name is None:
            log.info(f"{self.name}: ignoring unhandled webhook event {event_type}")
            return WebhookOutcome(action="ignored")
        handler = getattr(self, handler_name)
        outcome = await handler(payload)
        log.info(f"{self.name}: webhook {event_type} -> {outcome.action} {outcome.object_id or ''}".rstrip())
        return outcome

    async def _acknowledge(self, payload: Dict[str, Any]) -> WebhookOutcome:
        return WebhookOutcome(action="acknowledged")

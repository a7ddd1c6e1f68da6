"""
Sync Job Runner

Selects eligible connectors, runs each one's sync under a wall-clock
deadline and records the outcome on a SyncLog row and on the connector.
Fan-out across connectors is bounded; outbound requests are additionally
capped per provider by a ProviderLimiter shared by every client in a run.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from bizos.config import get_settings
from bizos.connectors.base_client import ProviderLimiter
from bizos.connectors.base_connector import SyncResult
from bizos.connectors.credentials import credentials_to_dict
from bizos.connectors.errors import ConnectorError, SyncTimeoutError
from bizos.connectors.registry import ConnectorRegistry, build_default_registry
from bizos.models.base import SessionLocal
from bizos.models.connector import (
    UNSYNCABLE_STATUSES,
    Connector,
    ConnectorStatus,
    SyncLog,
    SyncStatus,
)
from bizos.utils.logger import log

settings = get_settings()


class SyncJobRunner:
    """Runs connector syncs and keeps SyncLog/Connector bookkeeping consistent."""

    def __init__(
        self,
        registry: Optional[ConnectorRegistry] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        timeout_seconds: Optional[float] = None,
        max_parallel: Optional[int] = None,
        realtime=None,
    ):
        self.registry = registry or build_default_registry()
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds or settings.sync_run_timeout_seconds
        self.max_parallel = max(1, max_parallel or settings.sync_max_parallel_connectors)
        self.realtime = realtime

    # Entry points

    async def sync_single_connector(self, workspace_id: str, connector_id: str) -> Dict[str, Any]:
        """
        Sync one connector. Errors propagate to the caller after being
        recorded; an ineligible or unknown connector is skipped.
        """
        log.info(f"Syncing single connector {connector_id} (workspace {workspace_id})")
        db = self.session_factory()
        try:
            connector = self._eligible(db).filter(
                Connector.id == connector_id,
                Connector.workspace_id == workspace_id,
            ).first()
            if connector is None:
                log.warning(f"Connector {connector_id} not found or not active in workspace {workspace_id}")
                return {"connector_id": connector_id, "status": "skipped", "reason": "not_found_or_inactive"}
            return await self._run_connector(db, connector, ProviderLimiter())
        finally:
            db.close()

    async def sync_workspace_connectors(self, workspace_id: str) -> List[Dict[str, Any]]:
        log.info(f"Syncing connectors for workspace {workspace_id}")
        return await self._fan_out(lambda db: self._eligible(db).filter(Connector.workspace_id == workspace_id))

    async def sync_all_connectors(self) -> List[Dict[str, Any]]:
        log.info("Syncing all connectors")
        return await self._fan_out(self._eligible)

    # Internals

    def _eligible(self, db: Session):
        # A run killed mid-flight leaves the connector in syncing; once the
        # deadline has passed that status is stale and the connector is eligible again
        stale_before = datetime.utcnow() - timedelta(seconds=self.timeout_seconds)
        return db.query(Connector).filter(
            Connector.is_enabled.is_(True),
            Connector.status.notin_(UNSYNCABLE_STATUSES),
            or_(
                Connector.status != ConnectorStatus.SYNCING.value,
                Connector.updated_at < stale_before,
            ),
        )

    async def _fan_out(self, select) -> List[Dict[str, Any]]:
        db = self.session_factory()
        try:
            connector_ids = [c.id for c in select(db).order_by(Connector.created_at).all()]
        finally:
            db.close()

        if not connector_ids:
            log.info("No eligible connectors to sync")
            return []

        limiter = ProviderLimiter()
        gate = asyncio.Semaphore(self.max_parallel)

        async def run_one(connector_id: str) -> Dict[str, Any]:
            async with gate:
                session = self.session_factory()
                try:
                    connector = session.query(Connector).filter(Connector.id == connector_id).first()
                    if connector is None:
                        return {"connector_id": connector_id, "status": "skipped", "reason": "not_found_or_inactive"}
                    return await self._run_connector(session, connector, limiter)
                except Exception as e:
                    # Already recorded on the sync log; one connector must not stop the rest
                    log.error(f"Connector {connector_id} sync failed: {e}")
                    return {"connector_id": connector_id, "status": SyncStatus.FAILED.value, "error": str(e)}
                finally:
                    session.close()

        summaries = await asyncio.gather(*(run_one(cid) for cid in connector_ids))
        failed = sum(1 for s in summaries if s.get("status") == SyncStatus.FAILED.value)
        log.info(f"Connector sync finished: {len(summaries)} connector(s), {failed} failed")
        return list(summaries)

    async def _run_connector(self, db: Session, connector: Connector, limiter: ProviderLimiter) -> Dict[str, Any]:
        since = connector.last_sync_at
        sync_log = SyncLog(
            connector_id=connector.id,
            workspace_id=connector.workspace_id,
            status=SyncStatus.RUNNING.value,
            sync_type="incremental" if since else "full",
            started_at=datetime.utcnow(),
        )
        db.add(sync_log)
        connector.status = ConnectorStatus.SYNCING.value
        connector.last_sync_status = SyncStatus.RUNNING.value
        db.commit()

        log.info(
            f"Running {sync_log.sync_type} sync for {connector.type} connector {connector.id} "
            f"(workspace {connector.workspace_id})"
        )

        try:
            result = await asyncio.wait_for(self._execute(db, connector, limiter, since), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = SyncTimeoutError(f"Sync exceeded {self.timeout_seconds}s deadline")
            self._record_exception(db, connector, sync_log, error)
            raise error
        except Exception as e:
            self._record_exception(db, connector, sync_log, e)
            raise

        return self._record_result(db, connector, sync_log, result)

    async def _execute(self, db: Session, connector: Connector, limiter: ProviderLimiter,
                       since: Optional[datetime]) -> SyncResult:
        instance = self.registry.create(connector, db, limiter=limiter)

        refreshed = await instance.refresh_credentials()
        if refreshed is not None:
            connector.credentials = credentials_to_dict(refreshed)
            db.commit()
            log.info(f"Stored refreshed credentials for connector {connector.id}")

        if not await instance.test_connection():
            raise ConnectorError(f"Failed to connect to {connector.type}")

        if since:
            return await instance.incremental_sync(since)
        return await instance.full_sync()

    def _record_result(self, db: Session, connector: Connector, sync_log: SyncLog, result: SyncResult) -> Dict[str, Any]:
        status = SyncStatus.COMPLETED.value if result.success else SyncStatus.FAILED.value
        if not self._finish_log(db, sync_log, status, result.records_processed, result.errors):
            return self._summary(connector, sync_log)

        connector.last_sync_status = status
        connector.status = ConnectorStatus.ACTIVE.value
        if result.success:
            connector.last_sync_at = sync_log.started_at
            connector.last_sync_error = None
        else:
            # Keep the old watermark so the next incremental run covers the gap
            connector.last_sync_error = result.error_message
        db.commit()

        log.info(f"Connector {connector.id} sync {status}: {result.records_processed}")
        self._publish(connector, f"sync.{status}", {"sync_log_id": sync_log.id, "records": result.records_processed})
        return self._summary(connector, sync_log)

    def _record_exception(self, db: Session, connector: Connector, sync_log: SyncLog, error: Exception):
        db.rollback()
        message = str(error) or type(error).__name__
        try:
            self._finish_log(db, sync_log, SyncStatus.FAILED.value, None, [{"type": "sync_error", "message": message}])
            connector.last_sync_status = SyncStatus.FAILED.value
            connector.last_sync_error = message
            connector.status = ConnectorStatus.ERROR.value
            db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Failed to record sync failure for connector {connector.id}: {e}")
        log.error(f"Connector {connector.id} sync failed: {message}")
        self._publish(connector, "sync.failed", {"sync_log_id": sync_log.id, "error": message})

    @staticmethod
    def _finish_log(db: Session, sync_log: SyncLog, status: str, records: Optional[Dict[str, int]],
                    errors: Optional[List[Dict[str, str]]]) -> bool:
        """Move a running log to a terminal state; terminal logs are never rewritten."""
        db.refresh(sync_log)
        if sync_log.is_terminal:
            log.warning(f"Sync log {sync_log.id} already {sync_log.status}; refusing to set {status}")
            return False
        sync_log.status = status
        sync_log.completed_at = datetime.utcnow()
        if records is not None:
            sync_log.records_processed = dict(records)
        sync_log.errors = list(errors) if errors else None
        return True

    @staticmethod
    def _summary(connector: Connector, sync_log: SyncLog) -> Dict[str, Any]:
        return {
            "connector_id": connector.id,
            "workspace_id": connector.workspace_id,
            "type": connector.type,
            "sync_log_id": sync_log.id,
            "sync_type": sync_log.sync_type,
            "status": sync_log.status,
            "records_processed": sync_log.records_processed or {},
            "errors": sync_log.errors or [],
        }

    def _publish(self, connector: Connector, event_type: str, data: Dict[str, Any]):
        if self.realtime is None:
            return
        payload = {"connector_id": connector.id, "type": connector.type, **data}
        self.realtime.publish(connector.workspace_id, event_type, payload)

"""
Data synchronization endpoints
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from typing import Optional

from bizos.connectors.errors import (
    ConnectorError,
    CredentialsError,
    ProviderAPIError,
    SyncTimeoutError,
    UnsupportedConnectorError,
)
from bizos.models.base import get_db
from bizos.models.connector import SyncLog
from bizos.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


async def _run_workspace_sync(runner, workspace_id: str):
    """Background task: sync every eligible connector in a workspace."""
    try:
        results = await runner.sync_workspace_connectors(workspace_id)
        log.info(f"Background workspace sync for {workspace_id} finished: {len(results)} connector(s)")
    except Exception as e:
        log.error(f"Background workspace sync for {workspace_id} error: {str(e)}")


async def _run_sync_all(runner):
    """Background task: sync all eligible connectors."""
    try:
        results = await runner.sync_all_connectors()
        log.info(f"Background sync_all finished: {len(results)} connector(s)")
    except Exception as e:
        log.error(f"Background sync_all error: {str(e)}")


@router.post("/connectors/{connector_id}")
async def sync_connector(
    connector_id: str,
    request: Request,
    workspace_id: str = Query(..., description="Workspace owning the connector"),
):
    """Run one connector's sync now and return its outcome."""
    runner = request.app.state.job_runner
    try:
        summary = await runner.sync_single_connector(workspace_id, connector_id)
    except (CredentialsError, UnsupportedConnectorError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SyncTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except (ProviderAPIError, ConnectorError) as e:
        raise HTTPException(status_code=502, detail=str(e))

    if summary.get("status") == "skipped":
        raise HTTPException(status_code=404, detail="Connector not found or not active")
    return summary


@router.post("/workspaces/{workspace_id}")
async def sync_workspace(workspace_id: str, request: Request, background_tasks: BackgroundTasks):
    """Sync all of a workspace's connectors (runs in background)."""
    background_tasks.add_task(_run_workspace_sync, request.app.state.job_runner, workspace_id)
    return {
        "message": "Sync started in background",
        "workspace_id": workspace_id,
    }


@router.post("/all")
async def sync_all(request: Request, background_tasks: BackgroundTasks):
    """Sync every eligible connector across workspaces (runs in background)."""
    background_tasks.add_task(_run_sync_all, request.app.state.job_runner)
    return {"message": "Sync started in background"}


@router.get("/logs/{connector_id}")
def get_sync_logs(
    connector_id: str,
    limit: int = Query(20, ge=1, le=200),
    status: Optional[str] = Query(None, description="running, completed or failed"),
    db: Session = Depends(get_db),
):
    """Most recent sync runs for a connector"""
    query = db.query(SyncLog).filter(SyncLog.connector_id == connector_id)
    if status:
        query = query.filter(SyncLog.status == status)
    logs = query.order_by(SyncLog.started_at.desc()).limit(limit).all()
    return {
        "connector_id": connector_id,
        "logs": [
            {
                "id": entry.id,
                "status": entry.status,
                "sync_type": entry.sync_type,
                "started_at": entry.started_at.isoformat() if entry.started_at else None,
                "completed_at": entry.completed_at.isoformat() if entry.completed_at else None,
                "records_processed": entry.records_processed or {},
                "errors": entry.errors or [],
            }
            for entry in logs
        ],
    }

"""
Scheduler for recurring jobs

Uses APScheduler to run connector syncs, anomaly detection and the weekly
report on cron expressions from settings. Anomaly detection and report
generation live outside this package; they are plugged in as hooks.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Any, Awaitable, Callable, Dict, List, Optional
import time

from bizos.config import get_settings
from bizos.services.sync_job_runner import SyncJobRunner
from bizos.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)

JobHook = Callable[..., Awaitable[Dict[str, Any]]]

_job_runner: Optional[SyncJobRunner] = None
_hooks: Dict[str, JobHook] = {}


def get_job_runner() -> SyncJobRunner:
    global _job_runner
    if _job_runner is None:
        _job_runner = SyncJobRunner()
    return _job_runner


def set_job_runner(runner: Optional[SyncJobRunner]):
    global _job_runner
    _job_runner = runner


def set_job_hook(name: str, hook: Optional[JobHook]):
    """Plug in an external job implementation ('detect-anomalies', 'generate-weekly-report')."""
    if hook is None:
        _hooks.pop(name, None)
    else:
        _hooks[name] = hook


# Job functions

async def run_sync_job(workspace_id: Optional[str] = None, connector_id: Optional[str] = None) -> Dict[str, Any]:
    """Sync one connector, one workspace, or every eligible connector."""
    start = time.time()
    runner = get_job_runner()
    try:
        if workspace_id and connector_id:
            results = [await runner.sync_single_connector(workspace_id, connector_id)]
        elif workspace_id:
            results = await runner.sync_workspace_connectors(workspace_id)
        else:
            results = await runner.sync_all_connectors()
    except Exception as e:
        log.error(f"Connector sync job failed after {time.time() - start:.1f}s: {e}")
        return {"success": False, "error": str(e)}

    failed = [r for r in results if r.get("status") == "failed"]
    log.info(f"Connector sync job done in {time.time() - start:.1f}s: {len(results)} run, {len(failed)} failed")
    return {"success": not failed, "connectors": results}


async def _run_hook(name: str, **context) -> Dict[str, Any]:
    hook = _hooks.get(name)
    if hook is None:
        log.info(f"No handler configured for job '{name}', skipping")
        return {"success": True, "status": "not_configured"}
    start = time.time()
    try:
        result = await hook(**context)
        log.info(f"Job '{name}' completed in {time.time() - start:.1f}s")
        return {"success": True, "status": "completed", "result": result}
    except Exception as e:
        log.error(f"Job '{name}' failed: {e}")
        return {"success": False, "status": "failed", "error": str(e)}


async def run_anomaly_detection_job(workspace_id: Optional[str] = None) -> Dict[str, Any]:
    return await _run_hook("detect-anomalies", workspace_id=workspace_id)


async def run_weekly_report_job(workspace_id: Optional[str] = None) -> Dict[str, Any]:
    return await _run_hook("generate-weekly-report", workspace_id=workspace_id)


JOBS: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
    "sync-connectors": run_sync_job,
    "detect-anomalies": run_anomaly_detection_job,
    "generate-weekly-report": run_weekly_report_job,
}


async def run_job(name: str, **context) -> Dict[str, Any]:
    """Run a job by name, outside the schedule."""
    if name not in JOBS:
        raise KeyError(f"Job not found: {name}. Valid options: {', '.join(JOBS)}")
    log.info(f"Manually triggering job '{name}'")
    return await JOBS[name](**context)


def setup_scheduler():
    """
    Register the recurring jobs.

    All cron expressions are evaluated in settings.scheduler_timezone:
    - Connector sync:     settings.sync_cron (every 6 hours)
    - Anomaly detection:  settings.anomaly_cron (daily)
    - Weekly report:      settings.weekly_report_cron (Mondays)
    """
    timezone = settings.scheduler_timezone

    scheduler.add_job(
        run_sync_job,
        trigger=CronTrigger.from_crontab(settings.sync_cron, timezone=timezone),
        id="sync_connectors",
        name="Connector Sync",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.add_job(
        run_anomaly_detection_job,
        trigger=CronTrigger.from_crontab(settings.anomaly_cron, timezone=timezone),
        id="detect_anomalies",
        name="Anomaly Detection",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.add_job(
        run_weekly_report_job,
        trigger=CronTrigger.from_crontab(settings.weekly_report_cron, timezone=timezone),
        id="weekly_report",
        name="Weekly Report",
        replace_existing=True,
        max_instances=1,
    )
    log.info(f"Scheduled {len(scheduler.get_jobs())} jobs ({timezone})")


def start_scheduler(runner: Optional[SyncJobRunner] = None):
    """Start the scheduler"""
    if runner is not None:
        set_job_runner(runner)
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    log.info("Scheduler stopped")


def get_scheduled_jobs() -> List[Dict[str, Any]]:
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        })
    return jobs

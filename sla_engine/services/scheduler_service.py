"""
SLA Engine
Scheduler Service.

Registers periodic job functions, persists one ScheduledJob row per job and
drives them from an APScheduler BackgroundScheduler using the job's cron
expression.

Architecture:
    - register_job: decorator filling the in-process job registry
    - SchedulerService.run_job: runs one job inside the app context and
      records the outcome on its ScheduledJob row
    - SchedulerService.start / shutdown: wire every enabled job to a
      CronTrigger (max_instances=1, coalesce) and stop them again
    - Manual trigger via run_job (API: POST /api/v1/sla/jobs/<name>/run)
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask, has_app_context
from sqlalchemy import select

from sla_engine.models import db
from sla_engine.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("sla_breach_scan")
        def sla_breach_scan(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


def _find_job(job_name: str) -> ScheduledJob | None:
    return db.session.execute(
        select(ScheduledJob).where(ScheduledJob.job_name == job_name)
    ).scalar_one_or_none()


class SchedulerService:
    """
    Scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _scheduler: BackgroundScheduler | None = None
    _running: bool = False

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if _find_job(name) is None:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="cron",
                        schedule_config=_get_default_schedule(name, cls._app.config),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    # ── APScheduler lifecycle ─────────────────────────────────────────────

    @classmethod
    def start(cls) -> bool:
        """Start the background scheduler. Returns False if already running."""
        if cls._running:
            return False
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called before start()")

        cls.ensure_jobs_registered()
        scheduler = BackgroundScheduler(timezone="UTC")
        with cls._app.app_context():
            for name in _job_registry:
                record = _find_job(name)
                if record is not None and not record.is_enabled:
                    logger.info("Scheduled job %s is disabled, not scheduling", name,
                                extra={"job_name": name})
                    continue
                cron = (record.cron if record is not None else None) \
                    or _get_default_schedule(name, cls._app.config)["cron"]
                scheduler.add_job(
                    cls.run_job,
                    CronTrigger.from_crontab(cron, timezone="UTC"),
                    args=[name],
                    id=name,
                    name=name,
                    misfire_grace_time=60,
                    max_instances=1,
                    coalesce=True,
                    replace_existing=True,
                )
                logger.info("Scheduled job %s (%s)", name, cron, extra={"job_name": name})

        scheduler.start()
        cls._scheduler = scheduler
        cls._running = True
        logger.info("SLA scheduler started")
        return True

    @classmethod
    def shutdown(cls, wait: bool = False) -> bool:
        """Stop the background scheduler. Returns False if it was not running."""
        if not cls._running:
            return False
        if cls._scheduler is not None:
            cls._scheduler.shutdown(wait=wait)
        cls._scheduler = None
        cls._running = False
        logger.info("SLA scheduler stopped")
        return True

    @classmethod
    def is_running(cls) -> bool:
        return cls._running

    # ── Execution ─────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Reuses the caller's app context when there is one, so a manual
        trigger from a request shares the request's session.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with (nullcontext() if has_app_context() else cls._app.app_context()):
            try:
                result = fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

            duration_ms = int((time.monotonic() - start) * 1000)

            try:
                job_record = _find_job(job_name)
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
            except Exception:
                db.session.rollback()
                logger.exception("Failed to update job record for %s", job_name,
                                 extra={"job_name": job_name})

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    # ── Query ─────────────────────────────────────────────────────────────

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = _find_job(name)
            jobs.append({
                "job_name": name,
                "registered": True,
                "scheduled": cls._running,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = _find_job(job_name)
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job. Takes effect on the next start()."""
        job_record = _find_job(job_name)
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()


def _get_default_schedule(job_name: str, app_config=None) -> dict:
    """Return default schedule config for known job types."""
    app_config = app_config or {}
    defaults = {
        "sla_breach_scan": {
            "cron": app_config.get("SLA_SCAN_CRON", "*/5 * * * *"),
            "description": "Detect SLA breaches and take the first escalation step",
        },
        "sla_escalation_sweep": {
            "cron": app_config.get("SLA_ESCALATION_CRON", "*/5 * * * *"),
            "description": "Advance due escalation levels and auto-resolve finished tasks",
        },
    }
    return defaults.get(job_name, {"cron": "0 0 * * *", "description": "Daily at midnight"})

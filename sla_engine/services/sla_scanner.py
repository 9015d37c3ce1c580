"""
Periodic SLA scanning across tenants.

One scan pass per tenant: detect new breaches, then take one escalation
step for each of them. Each breach's escalation and each tenant's pass are
isolated: a failure is logged, its session work rolled back, and the scan
moves on.
"""

import logging

from flask import current_app
from sqlalchemy import select

from sla_engine.models import db
from sla_engine.models.auth import Profile, Tenant
from sla_engine.services.breach_detector import detect_breaches
from sla_engine.services.breach_lifecycle import auto_resolve_completed_tasks
from sla_engine.services.escalation import escalate_breach, process_escalations
from sla_engine.services.scheduler_service import SchedulerService
from sla_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)


def list_scan_tenants():
    """Ids of active tenants that have at least one profile."""
    return db.session.execute(
        select(Profile.tenant_id)
        .join(Tenant, Tenant.id == Profile.tenant_id)
        .where(Tenant.is_active.is_(True))
        .distinct()
        .order_by(Profile.tenant_id)
    ).scalars().all()


def scan_tenant(tenant_id, now=None) -> dict:
    """Detect breaches for one tenant and escalate each new one once."""
    now = as_utc(now) or utcnow()
    breaches = detect_breaches(tenant_id, now=now)
    breach_ids = [b.id for b in breaches]

    escalations = 0
    for breach_id in breach_ids:
        try:
            if escalate_breach(breach_id, now=now, tenant_id=tenant_id)["escalated"]:
                escalations += 1
        except Exception:
            db.session.rollback()
            logger.exception("Escalation failed for breach %s", breach_id,
                             extra={"tenant_id": tenant_id, "breach_id": breach_id})

    return {"breaches_detected": len(breach_ids), "escalations_triggered": escalations}


def run_manual_scan(tenant_id, now=None) -> dict:
    """Operator-triggered scan of one tenant. Returns detected/escalated counts."""
    result = scan_tenant(tenant_id, now=now)
    logger.info(
        "Manual SLA scan: %d breaches, %d escalations",
        result["breaches_detected"], result["escalations_triggered"],
        extra={"tenant_id": tenant_id},
    )
    return result


def _for_each_tenant(step, totals, now):
    tenant_ids = list_scan_tenants()
    failed = []
    for tenant_id in tenant_ids:
        try:
            for key, value in step(tenant_id, now).items():
                totals[key] = totals.get(key, 0) + value
        except Exception:
            db.session.rollback()
            failed.append(tenant_id)
            logger.exception("SLA scan failed for tenant %s", tenant_id,
                             extra={"tenant_id": tenant_id})
    totals["tenants_scanned"] = len(tenant_ids)
    totals["failed_tenants"] = failed
    return totals


def scan_all_tenants(now=None) -> dict:
    """Run the detect+escalate pass for every tenant."""
    now = as_utc(now) or utcnow()
    totals = _for_each_tenant(
        lambda tenant_id, at: scan_tenant(tenant_id, now=at),
        {"breaches_detected": 0, "escalations_triggered": 0},
        now,
    )
    logger.info("SLA scan finished: %d breaches, %d escalations, %d tenant failures",
                totals["breaches_detected"], totals["escalations_triggered"],
                len(totals["failed_tenants"]))
    return totals


def _sweep_tenant(tenant_id, now):
    return {
        "escalations_triggered": process_escalations(tenant_id, now=now),
        "breaches_auto_resolved": auto_resolve_completed_tasks(tenant_id, now=now),
    }


def sweep_escalations(now=None) -> dict:
    """Advance due escalation levels and auto-resolve finished tasks, per tenant."""
    now = as_utc(now) or utcnow()
    return _for_each_tenant(
        _sweep_tenant,
        {"escalations_triggered": 0, "breaches_auto_resolved": 0},
        now,
    )


def start_sla_monitoring(app=None) -> bool:
    """Start the periodic jobs. Safe to call when already running."""
    if app is not None:
        SchedulerService.init_app(app)
    elif SchedulerService._app is None:
        SchedulerService.init_app(current_app._get_current_object())
    started = SchedulerService.start()
    if not started:
        logger.info("SLA monitoring already running")
    return started


def stop_sla_monitoring() -> bool:
    """Stop the periodic jobs. Safe to call when not running."""
    return SchedulerService.shutdown()

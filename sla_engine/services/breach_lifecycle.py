"""
Breach lifecycle: acknowledge, resolve, auto-resolve and history.

All operations look breaches up through the tenant scope first. A breach
that belongs to another tenant behaves exactly like a missing one: the call
returns False / None and nothing is written.
"""

import logging

from sqlalchemy import and_, select

from sla_engine.models import db
from sla_engine.models.sla import ACTIVE_BREACH_STATUSES, SlaBreach, SlaPolicy
from sla_engine.models.work import TERMINAL_TASK_STATUSES, Task
from sla_engine.services.helpers.scoped_queries import get_scoped_or_none
from sla_engine.services.sla_audit import log_breach_event
from sla_engine.utils.helpers import as_utc, utcnow, whole_minutes_between

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def acknowledge_breach(breach_id, user_id, tenant_id, notes=None, now=None) -> bool:
    """Mark an active breach as acknowledged; the escalation sweep then skips it."""
    now = as_utc(now) or utcnow()
    breach = get_scoped_or_none(SlaBreach, breach_id, tenant_id=tenant_id)
    if breach is None or not breach.is_active:
        return False

    breach.status = "acknowledged"
    breach.acknowledged_at = now
    breach.acknowledged_by = user_id
    if notes is not None:
        breach.notes = notes
    log_breach_event(
        breach.id, "acknowledged", {"notes": breach.notes},
        triggered_by="user", user_id=user_id, commit=False,
    )
    db.session.commit()

    logger.info("SLA breach %s acknowledged", breach_id,
                extra={"tenant_id": tenant_id, "breach_id": breach_id})
    return True


def resolve_breach(breach_id, user_id, tenant_id, auto_resolved=False, now=None) -> bool:
    """Close an active breach and record how far past the deadline it ran.

    ``breach_duration_minutes`` is floor((now - deadline_at) in minutes).
    """
    now = as_utc(now) or utcnow()
    breach = get_scoped_or_none(SlaBreach, breach_id, tenant_id=tenant_id)
    if breach is None or not breach.is_active:
        return False

    duration = whole_minutes_between(breach.deadline_at, now)
    breach.status = "auto_resolved" if auto_resolved else "resolved"
    breach.resolved_at = now
    breach.resolved_by = user_id
    breach.actual_resolution_at = now
    breach.breach_duration_minutes = duration
    log_breach_event(
        breach.id, "resolved",
        {"auto_resolved": auto_resolved, "breach_duration_minutes": duration},
        triggered_by="system" if auto_resolved else "user",
        user_id=user_id, commit=False,
    )
    db.session.commit()

    logger.info("SLA breach %s %s after %d minutes past deadline",
                breach_id, "auto-resolved" if auto_resolved else "resolved", duration,
                extra={"tenant_id": tenant_id, "breach_id": breach_id})
    return True


def auto_resolve_completed_tasks(tenant_id, now=None) -> int:
    """Auto-resolve active task breaches whose task is Completed or Cancelled.

    The recorded actor is whoever acknowledged the breach, falling back to
    the tenant id when nobody did.
    """
    now = as_utc(now) or utcnow()
    rows = db.session.execute(
        select(SlaBreach.id, SlaBreach.acknowledged_by)
        .join(Task, and_(Task.id == SlaBreach.resource_id, Task.tenant_id == SlaBreach.tenant_id))
        .where(
            SlaBreach.tenant_id == tenant_id,
            SlaBreach.resource_type == "task",
            SlaBreach.status.in_(ACTIVE_BREACH_STATUSES),
            Task.status.in_(TERMINAL_TASK_STATUSES),
        )
        .order_by(SlaBreach.id)
    ).all()

    resolved = 0
    for breach_id, acknowledged_by in rows:
        if resolve_breach(breach_id, acknowledged_by or tenant_id, tenant_id,
                          auto_resolved=True, now=now):
            resolved += 1
    return resolved


def get_breach_history(tenant_id, sla_id=None, client_id=None, status=None,
                       start_date=None, end_date=None, limit=DEFAULT_HISTORY_LIMIT):
    """Return a tenant's breaches, newest detection first.

    ``client_id`` matches breaches whose policy is scoped to that client.
    ``start_date`` / ``end_date`` bound ``detected_at`` inclusively.
    """
    stmt = SlaBreach.select_for_tenant(tenant_id)
    if sla_id is not None:
        stmt = stmt.where(SlaBreach.sla_id == sla_id)
    if client_id is not None:
        stmt = stmt.join(SlaPolicy, SlaPolicy.id == SlaBreach.sla_id).where(
            SlaPolicy.client_id == client_id,
        )
    if status:
        stmt = stmt.where(SlaBreach.status == status)
    if start_date is not None:
        stmt = stmt.where(SlaBreach.detected_at >= as_utc(start_date))
    if end_date is not None:
        stmt = stmt.where(SlaBreach.detected_at <= as_utc(end_date))
    stmt = stmt.order_by(SlaBreach.detected_at.desc(), SlaBreach.id.desc()).limit(limit)
    return db.session.execute(stmt).scalars().all()


def get_breach_detail(tenant_id, breach_id):
    """Breach dict with its policy name and events in order, or None."""
    breach = get_scoped_or_none(SlaBreach, breach_id, tenant_id=tenant_id)
    if breach is None:
        return None
    data = breach.to_dict()
    data["sla_name"] = breach.policy.name if breach.policy else None
    data["events"] = [e.to_dict() for e in breach.events]
    return data

"""
Escalation engine.

A breach climbs its policy's escalation chain one level per call:
detected → escalated (L1) → escalated (L2) → … until the chain runs out or
the breach is resolved. The time-driven sweep skips acknowledged breaches;
a manual escalation still applies to them.

The level change is committed first. Notification, reassignment and the
audit row are then attempted one by one through ``attempt_effect``; their
outcomes come back in ``effects`` and a failure never undoes the level.
"""

import logging
from functools import partial

from sqlalchemy import and_, select

from sla_engine.models import db
from sla_engine.models.auth import Profile
from sla_engine.models.sla import EscalationChain, SlaBreach
from sla_engine.models.work import StaffAssignment, Task
from sla_engine.services.helpers.scoped_queries import get_scoped_or_none
from sla_engine.services.notification import NotificationService
from sla_engine.services.sla_audit import EFFECT_OK, attempt_effect, log_breach_event
from sla_engine.utils.helpers import as_utc, utcnow, whole_minutes_between

logger = logging.getLogger(__name__)

# Breaches the time-driven sweep advances
ESCALATABLE_STATUSES = ("detected", "escalated")


def _next_level(sla_id, current_level):
    return db.session.execute(
        select(EscalationChain).where(
            EscalationChain.sla_id == sla_id,
            EscalationChain.level == current_level + 1,
        )
    ).scalar_one_or_none()


def _reassign_task(tenant_id, task_id, profile_id):
    task = get_scoped_or_none(Task, task_id, tenant_id=tenant_id)
    if task is None:
        return None
    assignment = StaffAssignment(task_id=task.id, profile_id=profile_id)
    db.session.add(assignment)
    db.session.commit()
    return assignment


def escalate_breach(breach_id, now=None, tenant_id=None) -> dict:
    """Advance a breach to the next escalation level.

    Args:
        breach_id: SlaBreach PK.
        now: Clock override for the audit payload; defaults to utcnow().
        tenant_id: When given, a breach outside this tenant is treated as
            missing.

    Returns:
        Dict with ``escalated`` (bool), ``breach_id``, ``new_level``,
        ``escalated_to`` (target full name or None), ``actions`` (names of
        effects that succeeded) and ``effects`` (per-effect outcomes).
    """
    now = as_utc(now) or utcnow()
    result = {
        "escalated": False,
        "breach_id": breach_id,
        "new_level": 0,
        "escalated_to": None,
        "actions": [],
        "effects": [],
    }

    if tenant_id is None:
        breach = db.session.get(SlaBreach, breach_id)
    else:
        breach = get_scoped_or_none(SlaBreach, breach_id, tenant_id=tenant_id)
    if breach is None:
        return result

    from_level = breach.current_escalation_level or 0
    result["new_level"] = from_level
    if not breach.is_active:
        return result

    chain = _next_level(breach.sla_id, from_level)
    if chain is None:
        logger.debug("Escalation chain exhausted for breach %s at level %s", breach_id, from_level,
                     extra={"breach_id": breach_id, "escalation_level": from_level})
        return result

    # Snapshot before commit/rollback expires the instances
    breach_tenant_id = breach.tenant_id
    sla_id = breach.sla_id
    resource_type = breach.resource_type
    resource_id = breach.resource_id
    breach_type = breach.breach_type
    to_level = chain.level
    target_id = chain.profile_id
    notify_in_app = chain.notify_in_app
    reassign = chain.reassign_task

    breach.status = "escalated"
    breach.current_escalation_level = to_level
    db.session.commit()

    profile = db.session.get(Profile, target_id) if target_id else None
    if profile is not None and profile.tenant_id != breach_tenant_id:
        profile = None
    target_name = profile.full_name if profile else None

    effects = []
    actions = []

    if notify_in_app:
        label = breach_type.replace("_", " ")
        attempt_effect(effects, "in_app_notification", partial(
            NotificationService.notify_profile,
            target_id if profile else None,
            category="sla_escalation",
            title="SLA Breach Escalated",
            message=f"A {label} breach has been escalated to you (Level {to_level})",
            metadata={
                "breach_id": breach_id,
                "sla_id": sla_id,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "level": to_level,
            },
            tenant_id=breach_tenant_id,
            entity_id=breach_id,
        ), breach_id=breach_id)
        if effects[-1]["status"] == EFFECT_OK:
            actions.append("in_app_notification")

    if reassign and resource_type == "task":
        if profile is None:
            effects.append({"effect": "task_reassigned", "status": "skipped", "error": None})
        else:
            attempt_effect(effects, "task_reassigned", partial(
                _reassign_task, breach_tenant_id, resource_id, target_id,
            ), breach_id=breach_id)
            if effects[-1]["status"] == EFFECT_OK:
                actions.append("task_reassigned")

    attempt_effect(effects, "escalated_event", partial(
        log_breach_event, breach_id, "escalated", {
            "from_level": from_level,
            "to_level": to_level,
            "escalated_to": target_id if profile else None,
            "escalated_to_name": target_name,
            "actions": list(actions),
            "escalated_at": now.isoformat(),
        },
    ), breach_id=breach_id)

    logger.info(
        "SLA breach %s escalated to level %s", breach_id, to_level,
        extra={"tenant_id": breach_tenant_id, "breach_id": breach_id,
               "sla_id": sla_id, "escalation_level": to_level},
    )

    return {
        "escalated": True,
        "breach_id": breach_id,
        "new_level": to_level,
        "escalated_to": target_name,
        "actions": actions,
        "effects": effects,
    }


def process_escalations(tenant_id, now=None) -> int:
    """Escalate every breach whose next level's threshold has passed.

    Elapsed time is whole minutes since detection. Each breach advances at
    most one level per call, so repeated sweeps are safe.

    Returns:
        Number of breaches actually escalated.
    """
    now = as_utc(now) or utcnow()
    rows = db.session.execute(
        select(SlaBreach.id, SlaBreach.detected_at, EscalationChain.escalate_after_minutes)
        .join(EscalationChain, and_(
            EscalationChain.sla_id == SlaBreach.sla_id,
            EscalationChain.level == SlaBreach.current_escalation_level + 1,
        ))
        .where(
            SlaBreach.tenant_id == tenant_id,
            SlaBreach.status.in_(ESCALATABLE_STATUSES),
        )
        .order_by(SlaBreach.id)
    ).all()

    due = [
        breach_id for breach_id, detected_at, after in rows
        if whole_minutes_between(detected_at, now) >= after
    ]

    escalated = 0
    for breach_id in due:
        if escalate_breach(breach_id, now=now, tenant_id=tenant_id)["escalated"]:
            escalated += 1

    if escalated:
        logger.info("Escalated %d SLA breaches", escalated, extra={"tenant_id": tenant_id})
    return escalated

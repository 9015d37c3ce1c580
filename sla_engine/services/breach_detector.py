"""
Breach detection.

Compares open tasks against the deadlines of the policy that governs them
and records a SlaBreach for each violation. Detection is idempotent: a task
with an active breach under a policy is skipped, and the partial unique
index ``uq_sla_breaches_active_resource`` turns a concurrent duplicate
insert into an IntegrityError that is rolled back and ignored.
"""

import logging
from functools import partial

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sla_engine.core.exceptions import ValidationError
from sla_engine.models import db
from sla_engine.models.sla import ACTIVE_BREACH_STATUSES, SlaBreach, SlaBreachAction, SlaPolicy
from sla_engine.models.work import (
    OPEN_TASK_STATUSES,
    TASK_STATUS_PENDING,
    TERMINAL_TASK_STATUSES,
    Project,
    StaffAssignment,
    Task,
)
from sla_engine.services.deadline import calculate_deadline
from sla_engine.services.escalation import escalate_breach
from sla_engine.services.helpers.scoped_queries import get_scoped_or_none
from sla_engine.services.notification import NotificationService
from sla_engine.services.policy_resolver import find_applicable_policy
from sla_engine.services.sla_audit import EFFECT_SKIPPED, attempt_effect, log_breach_event
from sla_engine.utils.helpers import as_utc, utcnow, whole_minutes_between

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Deadline evaluation
# ═══════════════════════════════════════════════════════════════════════════

def task_deadlines(created_at, policy):
    """Return (response_deadline, resolution_deadline) for a task under a policy."""
    return (
        calculate_deadline(created_at, policy.response_time_hours, policy),
        calculate_deadline(created_at, policy.resolution_time_hours, policy),
    )


def _has_response(status, assigned):
    return assigned or status != TASK_STATUS_PENDING


def _assigned_task_ids(task_ids):
    if not task_ids:
        return set()
    return set(db.session.execute(
        select(StaffAssignment.task_id).where(StaffAssignment.task_id.in_(task_ids)).distinct()
    ).scalars())


def _violation(now, has_response, response_deadline, resolution_deadline, resolved=False):
    """Return (breach_type, deadline) for the violated target, or (None, None)."""
    if not has_response and now > response_deadline:
        return "response_time", response_deadline
    if not resolved and now > resolution_deadline:
        return "resolution_time", resolution_deadline
    return None, None


def _detectable_violation(now, has_response, response_deadline, resolution_deadline):
    """Detector rule: before a response only the response target counts, after it only resolution."""
    if not has_response:
        if now > response_deadline:
            return "response_time", response_deadline
        return None, None
    if now > resolution_deadline:
        return "resolution_time", resolution_deadline
    return None, None


def check_sla_for_task(task_id, tenant_id, client_id=None, project_id=None, now=None):
    """Point-in-time SLA status of one task.

    ``project_id`` defaults to the task's project and ``client_id`` to that
    project's client.

    Returns:
        None when the task is not in the tenant or no policy applies,
        otherwise a dict with ``is_breached``, ``breach_type``,
        ``deadline_at``, ``elapsed_minutes``, ``remaining_minutes`` and
        ``sla_id``.
    """
    now = as_utc(now) or utcnow()
    task = get_scoped_or_none(Task, task_id, tenant_id=tenant_id)
    if task is None:
        return None

    if project_id is None:
        project_id = task.project_id
    if client_id is None and project_id is not None:
        project = get_scoped_or_none(Project, project_id, tenant_id=tenant_id)
        client_id = project.client_id if project else None

    policy = find_applicable_policy(tenant_id, client_id, project_id, "task", task.priority)
    if policy is None:
        return None

    response_deadline, resolution_deadline = task_deadlines(task.created_at, policy)
    has_response = _has_response(task.status, bool(_assigned_task_ids([task.id])))
    breach_type, breach_deadline = _violation(
        now, has_response, response_deadline, resolution_deadline,
        resolved=task.status in TERMINAL_TASK_STATUSES,
    )
    target = resolution_deadline if has_response else response_deadline

    return {
        "is_breached": breach_type is not None,
        "breach_type": breach_type,
        "deadline_at": breach_deadline or target,
        "elapsed_minutes": max(0, whole_minutes_between(task.created_at, now)),
        "remaining_minutes": max(0, whole_minutes_between(now, target)),
        "sla_id": policy.id,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Detection
# ═══════════════════════════════════════════════════════════════════════════

def _active_breach_keys(tenant_id):
    rows = db.session.execute(
        select(SlaBreach.sla_id, SlaBreach.resource_id).where(
            SlaBreach.tenant_id == tenant_id,
            SlaBreach.resource_type == "task",
            SlaBreach.status.in_(ACTIVE_BREACH_STATUSES),
        )
    )
    return {(sla_id, resource_id) for sla_id, resource_id in rows}


def _open_tasks(tenant_id):
    """Snapshot open tasks as plain tuples so rollbacks cannot expire them."""
    rows = db.session.execute(
        select(Task.id, Task.project_id, Project.client_id, Task.priority,
               Task.status, Task.created_at)
        .outerjoin(Project, Project.id == Task.project_id)
        .where(Task.tenant_id == tenant_id, Task.status.in_(OPEN_TASK_STATUSES))
        .order_by(Task.id)
    ).all()
    return [tuple(row) for row in rows]


def detect_breaches(tenant_id, now=None) -> list:
    """Scan a tenant's open tasks and record new breaches.

    Each task is judged only against the policy the resolver picks for it,
    and only one breach type is recorded per pass. A task without a response
    can only breach its response target; once it has a response, only its
    resolution target is checked.

    Returns:
        List of newly created SlaBreach rows.
    """
    now = as_utc(now) or utcnow()
    policies = [
        p for p in db.session.execute(
            SlaPolicy.select_for_tenant(tenant_id)
            .where(SlaPolicy.status == "active")
            .order_by(SlaPolicy.id)
        ).scalars()
        if p.applies_to_resource("task")
    ]
    if not policies:
        return []

    tasks = _open_tasks(tenant_id)
    if not tasks:
        return []
    assigned = _assigned_task_ids([t[0] for t in tasks])
    active_keys = _active_breach_keys(tenant_id)
    governing = {}
    created = []

    for policy in policies:
        sla_id = policy.id
        try:
            for task_id, project_id, client_id, priority, status, created_at in tasks:
                if policy.project_id is not None and project_id != policy.project_id:
                    continue
                if (sla_id, task_id) in active_keys:
                    continue
                if task_id not in governing:
                    resolved = find_applicable_policy(tenant_id, client_id, project_id,
                                                      "task", priority)
                    governing[task_id] = resolved.id if resolved else None
                if governing[task_id] != sla_id:
                    continue

                response_deadline, resolution_deadline = task_deadlines(created_at, policy)
                breach_type, deadline_at = _detectable_violation(
                    now, _has_response(status, task_id in assigned),
                    response_deadline, resolution_deadline,
                )
                if breach_type is None:
                    continue

                breach = create_breach(tenant_id, policy, "task", task_id, breach_type,
                                       deadline_at, now=now)
                active_keys.add((sla_id, task_id))
                if breach is not None:
                    created.append(breach)
        except ValidationError as exc:
            logger.warning(
                "Skipping SLA policy %s: %s", sla_id, exc,
                extra={"tenant_id": tenant_id, "sla_id": sla_id},
            )

    if created:
        logger.info("Detected %d SLA breaches", len(created), extra={"tenant_id": tenant_id})
    return created


def create_breach(tenant_id, policy, resource_type, resource_id, breach_type, deadline_at,
                  now=None, metadata=None):
    """Insert a breach, then log and run its on-breach actions.

    The insert is committed on its own. If another scan already holds the
    active slot for this policy+resource, the insert is rolled back and
    None is returned. The audit event and breach actions are best effort.
    """
    now = as_utc(now) or utcnow()
    sla_id = policy.id
    created_by = policy.created_by

    breach = SlaBreach(
        tenant_id=tenant_id,
        sla_id=sla_id,
        resource_type=resource_type,
        resource_id=resource_id,
        breach_type=breach_type,
        status="detected",
        detected_at=now,
        deadline_at=as_utc(deadline_at),
        current_escalation_level=0,
        extra=metadata or {},
    )
    db.session.add(breach)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(
            "Active breach already recorded for %s %s under SLA %s",
            resource_type, resource_id, sla_id,
            extra={"tenant_id": tenant_id, "sla_id": sla_id,
                   "resource_type": resource_type, "resource_id": resource_id},
        )
        return None

    breach_id = breach.id
    logger.warning(
        "SLA %s breach detected for %s %s", breach_type, resource_type, resource_id,
        extra={"tenant_id": tenant_id, "sla_id": sla_id, "breach_id": breach_id,
               "breach_type": breach_type, "resource_type": resource_type,
               "resource_id": resource_id},
    )

    effects = []
    attempt_effect(effects, "detected_event", partial(
        log_breach_event, breach_id, "detected", {
            "breach_type": breach_type,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "deadline_at": as_utc(deadline_at).isoformat(),
        },
    ), breach_id=breach_id)
    execute_breach_actions(tenant_id, breach_id, sla_id, created_by, breach_type,
                           resource_type, resource_id, effects, now=now)
    return breach


def _notify_policy_owner(tenant_id, created_by, breach_id, sla_id, breach_type,
                         resource_type, resource_id):
    if not created_by:
        return None
    return NotificationService.notify_profile(
        created_by,
        category="sla_breach",
        title="SLA Breach Detected",
        message=f"A {breach_type} breach was detected for {resource_type} {resource_id}",
        metadata={
            "breach_id": breach_id,
            "sla_id": sla_id,
            "resource_type": resource_type,
            "resource_id": resource_id,
        },
        tenant_id=tenant_id,
        entity_id=breach_id,
    )


def execute_breach_actions(tenant_id, breach_id, sla_id, created_by, breach_type,
                           resource_type, resource_id, effects, now=None):
    """Run a policy's enabled on-breach actions, appending outcomes to ``effects``.

    ``notify`` messages the policy creator and ``escalate`` takes one
    escalation step. The remaining action types are recorded as skipped.
    """
    actions = db.session.execute(
        select(SlaBreachAction.action_type).where(
            SlaBreachAction.sla_id == sla_id,
            SlaBreachAction.enabled.is_(True),
            SlaBreachAction.trigger_at == "breach",
        ).order_by(SlaBreachAction.id)
    ).scalars().all()

    for action_type in actions:
        if action_type == "notify":
            attempt_effect(effects, "notify", partial(
                _notify_policy_owner, tenant_id, created_by, breach_id, sla_id,
                breach_type, resource_type, resource_id,
            ), breach_id=breach_id)
        elif action_type == "escalate":
            attempt_effect(effects, "escalate", partial(
                escalate_breach, breach_id, now=now, tenant_id=tenant_id,
            ), breach_id=breach_id)
        else:
            effects.append({"effect": action_type, "status": EFFECT_SKIPPED, "error": None})
    return effects

"""
SLA policy administration.

Centralises authoring of SlaPolicy, EscalationChain and SlaBreachAction so
that ``sla_bp`` stays HTTP-only. Every function takes ``tenant_id`` first,
returns serialized dicts and raises the core exceptions:

    NotFoundError   → 404 (missing or foreign-tenant row)
    ValidationError → 422 (business rule violated, field details attached)
    ConflictError   → 409 (policy already referenced by breaches)
"""

import logging
import math

from sqlalchemy import func, select

from sla_engine.core.exceptions import ConflictError, ValidationError
from sla_engine.models import db
from sla_engine.models.auth import Profile
from sla_engine.models.sla import (
    BREACH_ACTION_TYPES,
    EscalationChain,
    POLICY_PRIORITIES,
    POLICY_STATUSES,
    RESOURCE_TYPES,
    SlaBreach,
    SlaBreachAction,
    SlaPolicy,
    WEEKDAY_NAMES,
)
from sla_engine.models.work import TASK_PRIORITIES, Client, Project
from sla_engine.services.deadline import MAX_WALK_DAYS, calculate_deadline, resolve_timezone
from sla_engine.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from sla_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

CALENDAR_FIELDS = {
    "response_time_hours", "resolution_time_hours", "business_hours_start",
    "business_hours_end", "business_days", "timezone",
}

POLICY_FIELDS = (
    "client_id", "project_id", "name", "description", "priority", "status",
    "response_time_hours", "resolution_time_hours", "business_hours_only",
    "business_hours_start", "business_hours_end", "business_days", "timezone",
    "applies_to", "task_priorities",
)


# ──────────────────────────────────────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────────────────────────────────────

def _number(value):
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _validate_policy(tenant_id: int, data: dict) -> dict:
    """Return field → message for every rule ``data`` breaks."""
    errors = {}

    if not str(data.get("name") or "").strip():
        errors["name"] = "required"
    if data.get("priority") not in POLICY_PRIORITIES:
        errors["priority"] = f"one of {sorted(POLICY_PRIORITIES)}"
    if data.get("status") not in POLICY_STATUSES:
        errors["status"] = f"one of {sorted(POLICY_STATUSES)}"

    response = _number(data.get("response_time_hours"))
    resolution = _number(data.get("resolution_time_hours"))
    if response is None or response <= 0:
        errors["response_time_hours"] = "must be a positive number"
    if resolution is None or resolution <= 0:
        errors["resolution_time_hours"] = "must be a positive number"
    elif response is not None and resolution < response:
        errors["resolution_time_hours"] = "must be >= response_time_hours"

    start, end = data.get("business_hours_start"), data.get("business_hours_end")
    for field, value in (("business_hours_start", start), ("business_hours_end", end)):
        if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= 23:
            errors[field] = "integer hour 0-23"
    if "business_hours_start" not in errors and "business_hours_end" not in errors and start >= end:
        errors["business_hours_end"] = "must be after business_hours_start"

    days = data.get("business_days")
    if not isinstance(days, list) or not days:
        errors["business_days"] = "non-empty list of Mon..Sun"
    elif any(d not in WEEKDAY_NAMES for d in days):
        errors["business_days"] = f"values must be in {list(WEEKDAY_NAMES)}"

    applies_to = data.get("applies_to")
    if not isinstance(applies_to, list) or any(r not in RESOURCE_TYPES for r in applies_to):
        errors["applies_to"] = f"list of {sorted(RESOURCE_TYPES)}"

    task_priorities = data.get("task_priorities")
    if task_priorities is not None and (
        not isinstance(task_priorities, list)
        or any(p not in TASK_PRIORITIES for p in task_priorities)
    ):
        errors["task_priorities"] = f"list of {sorted(TASK_PRIORITIES)}"

    try:
        resolve_timezone(data.get("timezone"))
    except ValidationError:
        errors["timezone"] = "must be an IANA zone name"

    client_id, project_id = data.get("client_id"), data.get("project_id")
    if client_id is not None and get_scoped_or_none(Client, client_id, tenant_id=tenant_id) is None:
        errors["client_id"] = "unknown client"
    if project_id is not None:
        project = get_scoped_or_none(Project, project_id, tenant_id=tenant_id)
        if project is None:
            errors["project_id"] = "unknown project"
        elif client_id is not None and project.client_id != client_id:
            errors["project_id"] = "project does not belong to client_id"

    if not errors.keys() & CALENDAR_FIELDS:
        _check_deadline_reachable(data, response, resolution, errors)

    return errors


def _check_deadline_reachable(data: dict, response, resolution, errors: dict) -> None:
    """Reject targets the deadline walk cannot reach from today."""
    calendar = SlaPolicy(
        business_hours_only=bool(data.get("business_hours_only")),
        business_hours_start=data.get("business_hours_start"),
        business_hours_end=data.get("business_hours_end"),
        business_days=data.get("business_days"),
        timezone_name=data.get("timezone") or "UTC",
    )
    start = utcnow()
    for field, hours in (("response_time_hours", response), ("resolution_time_hours", resolution)):
        try:
            calculate_deadline(start, hours, calendar)
        except (ValidationError, OverflowError):
            errors[field] = f"deadline must fall within {MAX_WALK_DAYS} days"


def _policy_values(policy: SlaPolicy) -> dict:
    data = policy.to_dict()
    return {field: data[field] for field in POLICY_FIELDS}


def _apply_policy(policy: SlaPolicy, data: dict) -> None:
    for field in POLICY_FIELDS:
        if field == "timezone":
            policy.timezone_name = data["timezone"] or "UTC"
        else:
            setattr(policy, field, data[field])


def _has_breaches(policy_id: int) -> bool:
    return db.session.execute(
        select(func.count(SlaBreach.id)).where(SlaBreach.sla_id == policy_id)
    ).scalar_one() > 0


# ──────────────────────────────────────────────────────────────────────────────
# Policies
# ──────────────────────────────────────────────────────────────────────────────

def list_policies(tenant_id: int, status: str | None = None) -> list[dict]:
    """Return a tenant's policies ordered by name."""
    stmt = SlaPolicy.select_for_tenant(tenant_id)
    if status:
        stmt = stmt.where(SlaPolicy.status == status)
    stmt = stmt.order_by(SlaPolicy.name, SlaPolicy.id)
    return [p.to_dict() for p in db.session.execute(stmt).scalars()]


def get_policy(tenant_id: int, policy_id: int) -> dict:
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    data = policy.to_dict()
    data["escalations"] = [e.to_dict() for e in policy.escalations]
    data["actions"] = [a.to_dict() for a in policy.actions]
    return data


def create_policy(tenant_id: int, data: dict, created_by: int | None = None) -> dict:
    """Validate and persist a new SLA policy.

    Omitted calendar fields take the model defaults (09-17, Mon-Fri, UTC).

    Raises:
        ValidationError: With per-field ``details``.
    """
    values = {
        "client_id": None,
        "project_id": None,
        "description": "",
        "priority": "medium",
        "status": "active",
        "business_hours_only": True,
        "business_hours_start": 9,
        "business_hours_end": 17,
        "business_days": ["Mon", "Tue", "Wed", "Thu", "Fri"],
        "timezone": "UTC",
        "applies_to": ["task"],
        "task_priorities": None,
    }
    values.update({k: v for k, v in data.items() if k in POLICY_FIELDS})

    errors = _validate_policy(tenant_id, values)
    if errors:
        raise ValidationError("Invalid SLA policy", details=errors)

    policy = SlaPolicy(tenant_id=tenant_id, created_by=created_by)
    values["name"] = str(values["name"]).strip()
    _apply_policy(policy, values)
    db.session.add(policy)
    db.session.commit()
    logger.info("SlaPolicy created id=%s", policy.id,
                extra={"tenant_id": tenant_id, "sla_id": policy.id})
    return policy.to_dict()


def update_policy(tenant_id: int, policy_id: int, data: dict) -> dict:
    """Apply a partial update.

    Once any breach references the policy only ``status`` may change, so
    historical breaches keep the targets they were measured against.

    Raises:
        NotFoundError: Unknown or foreign policy.
        ConflictError: Non-status change to a referenced policy.
        ValidationError: Merged values break a rule.
    """
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    changes = {k: v for k, v in data.items() if k in POLICY_FIELDS}

    current = _policy_values(policy)
    changed_fields = [k for k, v in changes.items() if current.get(k) != v]
    if any(f != "status" for f in changed_fields) and _has_breaches(policy.id):
        raise ConflictError("SlaPolicy", "breaches", "policy is referenced by breaches; "
                            "only status may change")

    current.update(changes)
    errors = _validate_policy(tenant_id, current)
    if errors:
        raise ValidationError("Invalid SLA policy", details=errors)

    _apply_policy(policy, current)
    db.session.commit()
    logger.info("SlaPolicy updated id=%s fields=%s", policy.id, changed_fields,
                extra={"tenant_id": tenant_id, "sla_id": policy.id})
    return policy.to_dict()


def delete_policy(tenant_id: int, policy_id: int) -> None:
    """Delete an unreferenced policy. Referenced policies must be archived instead."""
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    if _has_breaches(policy.id):
        raise ConflictError("SlaPolicy", "breaches", "archive the policy instead")
    db.session.delete(policy)
    db.session.commit()
    logger.info("SlaPolicy deleted id=%s", policy_id,
                extra={"tenant_id": tenant_id, "sla_id": policy_id})


# ──────────────────────────────────────────────────────────────────────────────
# Escalation chain
# ──────────────────────────────────────────────────────────────────────────────

def list_escalations(tenant_id: int, policy_id: int) -> list[dict]:
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    return [e.to_dict() for e in policy.escalations]


def create_escalation(tenant_id: int, policy_id: int, data: dict) -> dict:
    """Append the next level to a policy's chain.

    Levels stay dense: ``level`` defaults to, and must equal, max + 1.
    ``escalate_after_minutes`` is measured from detection and may not be
    lower than the previous level's.
    """
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    last = db.session.execute(
        select(EscalationChain)
        .where(EscalationChain.sla_id == policy.id)
        .order_by(EscalationChain.level.desc())
        .limit(1)
    ).scalar_one_or_none()
    next_level = (last.level if last else 0) + 1

    errors = {}
    level = data.get("level", next_level)
    if level != next_level:
        errors["level"] = f"next level is {next_level}"

    minutes = data.get("escalate_after_minutes")
    if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes < 0:
        errors["escalate_after_minutes"] = "non-negative integer"
    elif last is not None and minutes < last.escalate_after_minutes:
        errors["escalate_after_minutes"] = (
            f"must be >= {last.escalate_after_minutes} (level {last.level})"
        )

    profile_id = data.get("profile_id")
    if profile_id is None:
        errors["profile_id"] = "required"
    elif get_scoped_or_none(Profile, profile_id, tenant_id=tenant_id) is None:
        errors["profile_id"] = "unknown profile"

    if errors:
        raise ValidationError("Invalid escalation level", details=errors)

    chain = EscalationChain(
        tenant_id=tenant_id,
        sla_id=policy.id,
        level=next_level,
        escalate_after_minutes=minutes,
        profile_id=profile_id,
        notify_email=data.get("notify_email"),
        notify_in_app=bool(data.get("notify_in_app", True)),
        reassign_task=bool(data.get("reassign_task", False)),
    )
    db.session.add(chain)
    db.session.commit()
    logger.info("Escalation level %s added to SLA %s", next_level, policy.id,
                extra={"tenant_id": tenant_id, "sla_id": policy.id, "escalation_level": next_level})
    return chain.to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# Breach actions
# ──────────────────────────────────────────────────────────────────────────────

def list_breach_actions(tenant_id: int, policy_id: int) -> list[dict]:
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    return [a.to_dict() for a in policy.actions.order_by(SlaBreachAction.id)]


def create_breach_action(tenant_id: int, policy_id: int, data: dict) -> dict:
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    action_type = data.get("action_type")
    if action_type not in BREACH_ACTION_TYPES:
        raise ValidationError(
            "Invalid breach action",
            details={"action_type": f"one of {sorted(BREACH_ACTION_TYPES)}"},
        )
    config = data.get("config") or {}
    if not isinstance(config, dict):
        raise ValidationError("Invalid breach action", details={"config": "must be an object"})

    action = SlaBreachAction(
        sla_id=policy.id,
        action_type=action_type,
        trigger_at=data.get("trigger_at", "breach"),
        config=config,
        enabled=bool(data.get("enabled", True)),
    )
    db.session.add(action)
    db.session.commit()
    return action.to_dict()

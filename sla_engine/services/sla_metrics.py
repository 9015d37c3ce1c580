"""
SLA metrics over a reporting window.

``compliance_rate`` is a heuristic penalty carried over from the first
version of the engine: each breach costs 10 points divided by the number of
active policies, floored at 0. It is not a met/total ratio.
"""

import logging
import math
from datetime import timedelta

from sqlalchemy import func, select

from sla_engine.core.exceptions import ValidationError
from sla_engine.models import db
from sla_engine.models.sla import RESOLVED_BREACH_STATUSES, SlaBreach, SlaPolicy
from sla_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

PERIOD_TYPES = ("daily", "weekly", "monthly")


def period_start(period_type, now):
    """UTC start of the window: today, last Sunday, or the 1st of the month."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period_type == "daily":
        return midnight
    if period_type == "weekly":
        # weekday(): Monday=0 … Sunday=6
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    if period_type == "monthly":
        return midnight.replace(day=1)
    raise ValidationError(
        f"Invalid period type {period_type!r}",
        details={"period": f"one of {', '.join(PERIOD_TYPES)}"},
    )


def get_sla_metrics(tenant_id, period_type="monthly", sla_id=None, client_id=None, now=None):
    now = as_utc(now) or utcnow()
    start = period_start(period_type, now)

    stmt = SlaBreach.select_for_tenant(tenant_id).where(SlaBreach.detected_at >= start)
    policy_count = select(func.count(SlaPolicy.id)).where(
        SlaPolicy.tenant_id == tenant_id, SlaPolicy.status == "active",
    )
    if sla_id is not None:
        stmt = stmt.where(SlaBreach.sla_id == sla_id)
        policy_count = policy_count.where(SlaPolicy.id == sla_id)
    if client_id is not None:
        stmt = stmt.join(SlaPolicy, SlaPolicy.id == SlaBreach.sla_id).where(
            SlaPolicy.client_id == client_id,
        )
        policy_count = policy_count.where(SlaPolicy.client_id == client_id)

    breaches = db.session.execute(stmt).scalars().all()
    active_policies = db.session.execute(policy_count).scalar_one()

    total = len(breaches)
    resolved = [b for b in breaches if b.status in RESOLVED_BREACH_STATUSES]
    durations = [b.breach_duration_minutes for b in resolved
                 if b.breach_duration_minutes is not None]
    average = math.floor(sum(durations) / len(durations) + 0.5) if durations else 0

    by_type = {}
    for b in breaches:
        key = b.breach_type or "unknown"
        by_type[key] = by_type.get(key, 0) + 1

    if total == 0 or active_policies == 0:
        compliance = 100.0
    else:
        compliance = round(max(0.0, 100 - (total / active_policies) * 10), 2)

    return {
        "compliance_rate": compliance,
        "total_breaches": total,
        "resolved_breaches": len(resolved),
        "average_resolution_time": average,
        "breaches_by_type": by_type,
        "period_type": period_type,
        "period_start": start.isoformat(),
        "period_end": now.isoformat(),
    }

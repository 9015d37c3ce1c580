"""
Breach audit trail and best-effort side effects.

``log_breach_event`` appends the write-once SlaBreachEvent rows.
``attempt_effect`` runs one side effect (notification, reassignment, audit
write) after the breach state change has committed, and records its
outcome instead of letting it undo that change.
"""

import logging

from sla_engine.models import db
from sla_engine.models.sla import BREACH_EVENT_TYPES, SlaBreachEvent

logger = logging.getLogger(__name__)

EFFECT_OK = "ok"
EFFECT_FAILED = "failed"
EFFECT_SKIPPED = "skipped"


def log_breach_event(breach_id, event_type, event_data=None, *, triggered_by="system",
                     user_id=None, commit=True):
    """Append an audit event for a breach transition."""
    if event_type not in BREACH_EVENT_TYPES:
        raise ValueError(f"Unknown breach event type: {event_type}")
    event = SlaBreachEvent(
        breach_id=breach_id,
        event_type=event_type,
        event_data=event_data or {},
        triggered_by=triggered_by,
        user_id=user_id,
    )
    db.session.add(event)
    if commit:
        db.session.commit()
    return event


def attempt_effect(effects: list, name: str, call, *, breach_id=None):
    """Run ``call()`` and append its outcome to ``effects``.

    A None return value records the effect as skipped (nothing to do, e.g.
    no target profile). An exception rolls back the pending session work,
    is logged at WARNING and is recorded as failed; it is never re-raised.

    Returns:
        The call's return value, or None when it failed.
    """
    try:
        result = call()
    except Exception as exc:
        db.session.rollback()
        logger.warning(
            "SLA side effect %s failed: %s", name, exc,
            extra={"breach_id": breach_id, "effect": name},
        )
        effects.append({"effect": name, "status": EFFECT_FAILED, "error": str(exc)})
        return None

    status = EFFECT_SKIPPED if result is None else EFFECT_OK
    effects.append({"effect": name, "status": status, "error": None})
    return result

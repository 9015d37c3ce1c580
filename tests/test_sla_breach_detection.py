"""
Tests: breach detection, on-breach actions and point-in-time SLA checks.

Covers:
    - Response vs resolution breaches and their deadlines
    - Idempotent re-scans and the active-breach unique index
    - One governing policy per task (no double breaches across scopes)
    - notify / escalate breach actions and the detected audit event
    - check_sla_for_task output

All test data created via ORM helpers and committed before the engine runs,
because the engine commits (and on conflict rolls back) its own work.
Time is pinned by passing ``now=``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from sla_engine.models import db as _db
from sla_engine.models.auth import Profile, Tenant
from sla_engine.models.notification import Notification
from sla_engine.models.sla import (
    EscalationChain,
    SlaBreach,
    SlaBreachAction,
    SlaBreachEvent,
    SlaPolicy,
)
from sla_engine.models.work import Client, Project, StaffAssignment, Task
from sla_engine.services.breach_detector import (
    check_sla_for_task,
    create_breach,
    detect_breaches,
)
from sla_engine.utils.helpers import as_utc

T0 = datetime(2024, 12, 9, 10, 0, tzinfo=timezone.utc)


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_tenant(slug: str = "detect-co") -> Tenant:
    t = Tenant(name="Detect Co", slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_profile(tenant_id: int, email: str = "owner@example.com", name: str = "Olivia Owner") -> Profile:
    p = Profile(tenant_id=tenant_id, email=email, full_name=name, role="manager")
    _db.session.add(p)
    _db.session.flush()
    return p


def _make_policy(tenant_id: int, **kw) -> SlaPolicy:
    values = dict(
        name="Standard",
        response_time_hours=1,
        resolution_time_hours=8,
        business_hours_only=False,
    )
    values.update(kw)
    policy = SlaPolicy(tenant_id=tenant_id, **values)
    _db.session.add(policy)
    _db.session.flush()
    return policy


def _make_task(tenant_id: int, status: str = "Pending", created_at: datetime = T0, **kw) -> Task:
    task = Task(tenant_id=tenant_id, title="Fix the login page", status=status,
                created_at=created_at, **kw)
    _db.session.add(task)
    _db.session.flush()
    return task


def _breaches(tenant_id: int) -> list[SlaBreach]:
    return _db.session.execute(
        SlaBreach.select_for_tenant(tenant_id).order_by(SlaBreach.id)
    ).scalars().all()


def _given_policy_and_task(**task_kw) -> tuple[int, int, int]:
    """Tenant + 1h/8h wall-clock policy + task created at T0, committed.

    Returns:
        (tenant_id, policy_id, task_id)
    """
    t = _make_tenant()
    policy = _make_policy(t.id)
    task = _make_task(t.id, **task_kw)
    _db.session.commit()
    return t.id, policy.id, task.id


# ═════════════════════════════════════════════════════════════════════════════
# 1. RESPONSE / RESOLUTION BREACHES
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_unassigned_task_past_response_deadline_breaches_once():
    """Policy 1h/8h, unassigned task at T0, scanned at T0+61min."""
    tid, sla_id, task_id = _given_policy_and_task()

    created = detect_breaches(tid, now=T0 + timedelta(minutes=61))

    assert len(created) == 1
    breach = _breaches(tid)[0]
    assert breach.sla_id == sla_id
    assert breach.resource_type == "task"
    assert breach.resource_id == task_id
    assert breach.breach_type == "response_time"
    assert breach.status == "detected"
    assert breach.current_escalation_level == 0
    assert as_utc(breach.deadline_at) == T0 + timedelta(minutes=60)
    assert as_utc(breach.detected_at) == T0 + timedelta(minutes=61)


@pytest.mark.unit
def test_no_breach_before_deadline():
    tid, _, _ = _given_policy_and_task()
    assert detect_breaches(tid, now=T0 + timedelta(minutes=60)) == []
    assert _breaches(tid) == []


@pytest.mark.unit
def test_detection_is_idempotent():
    tid, _, _ = _given_policy_and_task()
    now = T0 + timedelta(minutes=61)

    assert len(detect_breaches(tid, now=now)) == 1
    assert detect_breaches(tid, now=now) == []
    assert detect_breaches(tid, now=now + timedelta(hours=10)) == []
    assert len(_breaches(tid)) == 1


@pytest.mark.unit
def test_assigned_task_only_breaches_on_resolution():
    tid, _, task_id = _given_policy_and_task()
    profile = _make_profile(tid)
    _db.session.add(StaffAssignment(task_id=task_id, profile_id=profile.id))
    _db.session.commit()

    assert detect_breaches(tid, now=T0 + timedelta(hours=2)) == []

    created = detect_breaches(tid, now=T0 + timedelta(hours=8, minutes=1))
    assert len(created) == 1
    breach = _breaches(tid)[0]
    assert breach.breach_type == "resolution_time"
    assert as_utc(breach.deadline_at) == T0 + timedelta(hours=8)


@pytest.mark.unit
def test_in_progress_task_counts_as_responded():
    tid, _, _ = _given_policy_and_task(status="In Progress")
    assert detect_breaches(tid, now=T0 + timedelta(hours=2)) == []
    created = detect_breaches(tid, now=T0 + timedelta(hours=9))
    assert [b.breach_type for b in created] == ["resolution_time"]


@pytest.mark.unit
def test_unresponded_task_never_breaches_on_resolution():
    """Policy 4h/1h: resolution deadline passes first, response still governs."""
    t = _make_tenant()
    _make_policy(t.id, response_time_hours=4, resolution_time_hours=1)
    _make_task(t.id)
    _db.session.commit()

    assert detect_breaches(t.id, now=T0 + timedelta(hours=2)) == []
    assert _breaches(t.id) == []

    created = detect_breaches(t.id, now=T0 + timedelta(hours=4, minutes=1))
    assert [b.breach_type for b in created] == ["response_time"]
    assert as_utc(created[0].deadline_at) == T0 + timedelta(hours=4)


@pytest.mark.unit
@pytest.mark.parametrize("status", ["Completed", "Cancelled"])
def test_finished_tasks_are_not_scanned(status):
    tid, _, _ = _given_policy_and_task(status=status)
    assert detect_breaches(tid, now=T0 + timedelta(days=3)) == []


@pytest.mark.unit
def test_resolved_breach_allows_a_new_one():
    tid, _, _ = _given_policy_and_task()
    first = detect_breaches(tid, now=T0 + timedelta(minutes=61))[0]
    first.status = "resolved"
    _db.session.commit()

    again = detect_breaches(tid, now=T0 + timedelta(minutes=90))
    assert len(again) == 1
    assert len(_breaches(tid)) == 2


@pytest.mark.unit
def test_paused_policy_detects_nothing():
    t = _make_tenant()
    _make_policy(t.id, status="paused")
    _make_task(t.id)
    _db.session.commit()
    assert detect_breaches(t.id, now=T0 + timedelta(days=1)) == []


@pytest.mark.unit
def test_business_hours_policy_uses_calendar_deadline():
    """Task created Friday 16:30 under a 1h business-hours SLA is due Monday 09:30."""
    friday = datetime(2024, 12, 6, 16, 30, tzinfo=timezone.utc)
    t = _make_tenant()
    _make_policy(t.id, business_hours_only=True)
    _make_task(t.id, created_at=friday)
    _db.session.commit()

    saturday_noon = datetime(2024, 12, 7, 12, 0, tzinfo=timezone.utc)
    assert detect_breaches(t.id, now=saturday_noon) == []

    created = detect_breaches(t.id, now=datetime(2024, 12, 9, 9, 31, tzinfo=timezone.utc))
    assert len(created) == 1
    assert as_utc(created[0].deadline_at) == datetime(2024, 12, 9, 9, 30, tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# 2. GOVERNING POLICY
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_task_is_judged_only_by_its_most_specific_policy():
    t = _make_tenant()
    client = Client(tenant_id=t.id, name="Acme")
    _db.session.add(client)
    _db.session.flush()
    project = Project(tenant_id=t.id, client_id=client.id, name="Acme Web")
    _db.session.add(project)
    _db.session.flush()
    _make_policy(t.id, name="Tenant-wide")
    project_policy = _make_policy(t.id, name="Project", project_id=project.id,
                                  response_time_hours=4, resolution_time_hours=24)
    _make_task(t.id, project_id=project.id)
    _db.session.commit()

    # Past the tenant-wide 1h deadline but inside the project's 4h one
    assert detect_breaches(t.id, now=T0 + timedelta(hours=2)) == []

    created = detect_breaches(t.id, now=T0 + timedelta(hours=5))
    assert len(created) == 1
    assert created[0].sla_id == project_policy.id


@pytest.mark.unit
def test_project_policy_ignores_tasks_of_other_projects():
    t = _make_tenant()
    p1 = Project(tenant_id=t.id, name="One")
    p2 = Project(tenant_id=t.id, name="Two")
    _db.session.add_all([p1, p2])
    _db.session.flush()
    _make_policy(t.id, project_id=p1.id)
    _make_task(t.id, project_id=p2.id)
    _db.session.commit()

    assert detect_breaches(t.id, now=T0 + timedelta(days=1)) == []


@pytest.mark.unit
def test_priority_filtered_policy_skips_other_priorities():
    t = _make_tenant()
    _make_policy(t.id, task_priorities=["Urgent"])
    _make_task(t.id, priority="Low")
    urgent = _make_task(t.id, priority="Urgent")
    _db.session.commit()

    created = detect_breaches(t.id, now=T0 + timedelta(hours=2))
    assert [b.resource_id for b in created] == [urgent.id]


@pytest.mark.unit
def test_broken_calendar_policy_is_skipped_not_fatal():
    t = _make_tenant()
    _make_policy(t.id, name="Broken", business_hours_only=True, business_days=[])
    _make_task(t.id)
    _db.session.commit()

    assert detect_breaches(t.id, now=T0 + timedelta(days=2)) == []


@pytest.mark.unit
def test_other_tenants_tasks_are_untouched():
    tid, _, _ = _given_policy_and_task()
    other = _make_tenant("other-co")
    _make_task(other.id)
    _db.session.commit()

    detect_breaches(tid, now=T0 + timedelta(hours=2))
    assert _breaches(other.id) == []


# ═════════════════════════════════════════════════════════════════════════════
# 3. CREATE_BREACH / ACTIONS / AUDIT
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_detected_event_is_logged():
    tid, _, _ = _given_policy_and_task()
    breach = detect_breaches(tid, now=T0 + timedelta(minutes=61))[0]

    events = breach.events.all()
    assert [e.event_type for e in events] == ["detected"]
    assert events[0].triggered_by == "system"
    assert events[0].event_data["breach_type"] == "response_time"


@pytest.mark.unit
def test_second_active_breach_insert_is_rejected():
    tid, sla_id, task_id = _given_policy_and_task()
    policy = _db.session.get(SlaPolicy, sla_id)
    deadline = T0 + timedelta(hours=1)

    first = create_breach(tid, policy, "task", task_id, "response_time", deadline, now=T0)
    second = create_breach(tid, policy, "task", task_id, "resolution_time", deadline, now=T0)

    assert first is not None
    assert second is None
    assert len(_breaches(tid)) == 1


@pytest.mark.unit
def test_notify_action_messages_the_policy_creator():
    t = _make_tenant()
    owner = _make_profile(t.id)
    policy = _make_policy(t.id, created_by=owner.id)
    _db.session.add(SlaBreachAction(sla_id=policy.id, action_type="notify"))
    task = _make_task(t.id)
    _db.session.commit()

    breach = detect_breaches(t.id, now=T0 + timedelta(minutes=61))[0]

    notes = _db.session.execute(
        Notification.select_for_tenant(t.id).where(Notification.profile_id == owner.id)
    ).scalars().all()
    assert len(notes) == 1
    assert notes[0].category == "sla_breach"
    assert notes[0].title == "SLA Breach Detected"
    assert notes[0].message == f"A response_time breach was detected for task {task.id}"
    assert notes[0].entity_id == breach.id


@pytest.mark.unit
def test_escalate_action_takes_first_escalation_step():
    t = _make_tenant()
    lead = _make_profile(t.id, "lead@example.com", "Lee Lead")
    policy = _make_policy(t.id)
    _db.session.add(EscalationChain(tenant_id=t.id, sla_id=policy.id, level=1,
                                    escalate_after_minutes=30, profile_id=lead.id))
    _db.session.add(SlaBreachAction(sla_id=policy.id, action_type="escalate"))
    _make_task(t.id)
    _db.session.commit()

    breach = detect_breaches(t.id, now=T0 + timedelta(minutes=61))[0]

    _db.session.refresh(breach)
    assert breach.status == "escalated"
    assert breach.current_escalation_level == 1


@pytest.mark.unit
def test_disabled_and_inert_actions_do_nothing():
    t = _make_tenant()
    owner = _make_profile(t.id)
    policy = _make_policy(t.id, created_by=owner.id)
    _db.session.add_all([
        SlaBreachAction(sla_id=policy.id, action_type="notify", enabled=False),
        SlaBreachAction(sla_id=policy.id, action_type="pause_billing"),
        SlaBreachAction(sla_id=policy.id, action_type="create_task"),
    ])
    _make_task(t.id)
    _db.session.commit()

    assert len(detect_breaches(t.id, now=T0 + timedelta(minutes=61))) == 1
    assert _db.session.execute(Notification.select_for_tenant(t.id)).scalars().all() == []
    assert [e.event_type for e in _db.session.execute(select(SlaBreachEvent)).scalars()] == ["detected"]


# ═════════════════════════════════════════════════════════════════════════════
# 4. CHECK_SLA_FOR_TASK
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_check_reports_remaining_time_before_response_deadline():
    tid, sla_id, task_id = _given_policy_and_task()

    result = check_sla_for_task(task_id, tid, now=T0 + timedelta(minutes=20))

    assert result["is_breached"] is False
    assert result["breach_type"] is None
    assert result["sla_id"] == sla_id
    assert result["elapsed_minutes"] == 20
    assert result["remaining_minutes"] == 40
    assert as_utc(result["deadline_at"]) == T0 + timedelta(hours=1)


@pytest.mark.unit
def test_check_reports_response_breach():
    tid, _, task_id = _given_policy_and_task()
    result = check_sla_for_task(task_id, tid, now=T0 + timedelta(minutes=75))
    assert result["is_breached"] is True
    assert result["breach_type"] == "response_time"
    assert result["remaining_minutes"] == 0


@pytest.mark.unit
def test_check_uses_resolution_deadline_once_responded():
    tid, _, task_id = _given_policy_and_task(status="In Progress")
    result = check_sla_for_task(task_id, tid, now=T0 + timedelta(hours=2))
    assert result["is_breached"] is False
    assert result["remaining_minutes"] == 6 * 60
    assert as_utc(result["deadline_at"]) == T0 + timedelta(hours=8)


@pytest.mark.unit
def test_check_completed_task_is_not_resolution_breached():
    tid, _, task_id = _given_policy_and_task(status="Completed")
    result = check_sla_for_task(task_id, tid, now=T0 + timedelta(days=2))
    assert result["is_breached"] is False


@pytest.mark.unit
def test_check_returns_none_for_foreign_task_or_no_policy():
    tid, _, task_id = _given_policy_and_task()
    other = _make_tenant("other-co")
    lonely_task = _make_task(other.id)
    _db.session.commit()

    assert check_sla_for_task(task_id, other.id, now=T0) is None
    assert check_sla_for_task(lonely_task.id, other.id, now=T0) is None
    assert check_sla_for_task(999999, tid, now=T0) is None

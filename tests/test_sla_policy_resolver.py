"""
Tests: which SLA policy governs a work item.

Resolution is most-specific-first (project → client → tenant-wide), with
applies_to / task_priorities filters falling through to broader scopes.
"""

from __future__ import annotations

import pytest

from sla_engine.models import db as _db
from sla_engine.models.auth import Tenant
from sla_engine.models.sla import SlaPolicy
from sla_engine.models.work import Client, Project
from sla_engine.services.policy_resolver import find_applicable_policy


# ── ORM helpers ───────────────────────────────────────────────────────────────


def _make_tenant(slug: str = "resolver-co") -> Tenant:
    t = Tenant(name="Resolver Co", slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def _make_client_project(tenant_id: int) -> tuple[Client, Project]:
    c = Client(tenant_id=tenant_id, name="Acme")
    _db.session.add(c)
    _db.session.flush()
    p = Project(tenant_id=tenant_id, client_id=c.id, name="Acme Website")
    _db.session.add(p)
    _db.session.flush()
    return c, p


def _make_policy(tenant_id: int, name: str, **kw) -> SlaPolicy:
    policy = SlaPolicy(
        tenant_id=tenant_id,
        name=name,
        response_time_hours=kw.pop("response_time_hours", 1),
        resolution_time_hours=kw.pop("resolution_time_hours", 8),
        **kw,
    )
    _db.session.add(policy)
    _db.session.flush()
    return policy


# ═════════════════════════════════════════════════════════════════════════════
# 1. SCOPE PRECEDENCE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_project_policy_beats_client_and_tenant():
    t = _make_tenant()
    c, p = _make_client_project(t.id)
    _make_policy(t.id, "Tenant-wide")
    _make_policy(t.id, "Client", client_id=c.id)
    project_policy = _make_policy(t.id, "Project", client_id=c.id, project_id=p.id)

    found = find_applicable_policy(t.id, c.id, p.id, "task", "High")
    assert found.id == project_policy.id


@pytest.mark.unit
def test_client_policy_used_when_no_project_policy():
    t = _make_tenant()
    c, p = _make_client_project(t.id)
    _make_policy(t.id, "Tenant-wide")
    client_policy = _make_policy(t.id, "Client", client_id=c.id)

    assert find_applicable_policy(t.id, c.id, p.id, "task").id == client_policy.id


@pytest.mark.unit
def test_tenant_policy_is_the_fallback():
    t = _make_tenant()
    c, p = _make_client_project(t.id)
    tenant_policy = _make_policy(t.id, "Tenant-wide")

    assert find_applicable_policy(t.id, c.id, p.id, "task").id == tenant_policy.id
    assert find_applicable_policy(t.id).id == tenant_policy.id


@pytest.mark.unit
def test_oldest_policy_wins_within_a_scope():
    t = _make_tenant()
    first = _make_policy(t.id, "Zulu")
    _make_policy(t.id, "Alpha")
    assert find_applicable_policy(t.id).id == first.id


# ═════════════════════════════════════════════════════════════════════════════
# 2. FILTERS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_priority_filter_falls_through_to_broader_scope():
    t = _make_tenant()
    c, p = _make_client_project(t.id)
    tenant_policy = _make_policy(t.id, "Tenant-wide")
    urgent_only = _make_policy(t.id, "Urgent project", project_id=p.id, task_priorities=["Urgent"])

    assert find_applicable_policy(t.id, c.id, p.id, "task", "Low").id == tenant_policy.id
    assert find_applicable_policy(t.id, c.id, p.id, "task", "Urgent").id == urgent_only.id


@pytest.mark.unit
def test_priority_filter_ignored_when_priority_unknown():
    t = _make_tenant()
    policy = _make_policy(t.id, "Urgent only", task_priorities=["Urgent"])
    assert find_applicable_policy(t.id, priority=None).id == policy.id


@pytest.mark.unit
def test_applies_to_filter():
    t = _make_tenant()
    _make_policy(t.id, "Messages", applies_to=["message"])
    assert find_applicable_policy(t.id, resource_type="task") is None
    assert find_applicable_policy(t.id, resource_type="message") is not None


@pytest.mark.unit
def test_empty_applies_to_matches_everything():
    t = _make_tenant()
    policy = _make_policy(t.id, "Everything", applies_to=[])
    assert find_applicable_policy(t.id, resource_type="initiative").id == policy.id


@pytest.mark.unit
def test_paused_and_archived_policies_are_ignored():
    t = _make_tenant()
    _make_policy(t.id, "Paused", status="paused")
    _make_policy(t.id, "Archived", status="archived")
    assert find_applicable_policy(t.id) is None


@pytest.mark.unit
def test_other_tenants_policies_never_apply():
    t1 = _make_tenant("t1")
    t2 = _make_tenant("t2")
    _make_policy(t1.id, "Tenant one")
    assert find_applicable_policy(t2.id) is None

"""
Policy resolution: which SLA governs a work item.

Most specific scope wins: project, then client, then tenant-wide. A scope
whose policies all fail the applies_to / task_priorities filters falls
through to the next broader scope.
"""

import logging

from sqlalchemy import and_

from sla_engine.models import db
from sla_engine.models.sla import SlaPolicy

logger = logging.getLogger(__name__)


def _scope_clauses(client_id, project_id):
    clauses = []
    if project_id is not None:
        clauses.append(("project", SlaPolicy.project_id == project_id))
    if client_id is not None:
        clauses.append(("client", and_(SlaPolicy.client_id == client_id,
                                       SlaPolicy.project_id.is_(None))))
    clauses.append(("tenant", and_(SlaPolicy.client_id.is_(None),
                                   SlaPolicy.project_id.is_(None))))
    return clauses


def find_applicable_policy(tenant_id, client_id=None, project_id=None,
                           resource_type="task", priority=None):
    """Return the active SlaPolicy that governs the resource, or None.

    Within one scope the oldest policy (lowest id) that passes the filters
    is picked.
    """
    for scope, clause in _scope_clauses(client_id, project_id):
        stmt = (
            SlaPolicy.select_for_tenant(tenant_id)
            .where(SlaPolicy.status == "active", clause)
            .order_by(SlaPolicy.id)
        )
        for policy in db.session.execute(stmt).scalars():
            if policy.applies_to_resource(resource_type, priority):
                logger.debug(
                    "Resolved SLA policy %s at %s scope", policy.id, scope,
                    extra={"tenant_id": tenant_id, "sla_id": policy.id},
                )
                return policy
    return None

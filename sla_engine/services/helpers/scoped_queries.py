"""
Tenant-scoped lookup helpers.

Every get-by-id on a tenant-owned SLA row goes through these helpers instead
of db.session.get(Model, pk). A bare .get() would let a caller acknowledge,
resolve or edit another tenant's breach or policy.

Usage:
    policy = get_scoped(SlaPolicy, policy_id, tenant_id=tenant_id)
    breach = get_scoped_or_none(SlaBreach, breach_id, tenant_id=tenant_id)
    level = get_scoped_or_none(EscalationChain, chain_id, sla_id=policy.id)

Cross-tenant access is indistinguishable from a missing row: both raise
NotFoundError (or return None), so a 404 never confirms the row exists.
"""

import logging

from sqlalchemy import select

from sla_engine.core.exceptions import NotFoundError
from sla_engine.models import db

logger = logging.getLogger(__name__)


def get_scoped(model, pk: int, *, tenant_id: int | None = None, sla_id: int | None = None):
    """Fetch a single row by PK with a mandatory scope filter.

    Args:
        model: SQLAlchemy model class with an ``id`` PK and the scope column(s).
        pk: Primary key value to look up.
        tenant_id: Scope by tenant_id column.
        sla_id: Scope by sla_id column (chain levels, breach actions).

    Raises:
        ValueError: If no scope is given, or the model lacks a given scope column.
        NotFoundError: If the row does not exist OR belongs to a different scope.
    """
    scopes = {k: v for k, v in (("tenant_id", tenant_id), ("sla_id", sla_id)) if v is not None}
    if not scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id or sla_id scope. "
            "Unscoped lookups bypass tenant isolation."
        )

    missing = [field for field in scopes if not hasattr(model, field)]
    if missing:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {missing}; refusing an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found in scope %s", model.__name__, pk, scopes)
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)
    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None = None, sla_id: int | None = None):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still raises ValueError for a missing scope: silent unscoped lookups are
    never acceptable regardless of return style.
    """
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, sla_id=sla_id)
    except NotFoundError:
        return None

"""
TenantModel: Abstract base class for tenant-scoped models.

All models that need tenant isolation inherit from TenantModel
instead of db.Model directly. This adds:
  - tenant_id FK column with index
  - select_for_tenant(tenant_id) classmethod returning a 2.0-style select()
"""

from sqlalchemy import select

from sla_engine.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def select_for_tenant(cls, tenant_id):
        """Return a select() statement filtered by tenant_id."""
        return select(cls).where(cls.tenant_id == tenant_id)

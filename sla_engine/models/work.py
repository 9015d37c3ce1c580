"""
Work-item models: clients, projects, tasks and staff assignments.

These tables are owned by the surrounding application. The SLA engine only
reads tasks (status, priority, creation time) and writes staff assignments
when an escalation level reassigns work.
"""

from datetime import datetime, timezone

from sla_engine.models import db
from sla_engine.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUS_PENDING = "Pending"
TASK_STATUS_IN_PROGRESS = "In Progress"
TASK_STATUS_COMPLETED = "Completed"
TASK_STATUS_CANCELLED = "Cancelled"

TASK_STATUSES = {
    TASK_STATUS_PENDING, TASK_STATUS_IN_PROGRESS,
    TASK_STATUS_COMPLETED, TASK_STATUS_CANCELLED,
}
OPEN_TASK_STATUSES = (TASK_STATUS_PENDING, TASK_STATUS_IN_PROGRESS)
TERMINAL_TASK_STATUSES = (TASK_STATUS_COMPLETED, TASK_STATUS_CANCELLED)

TASK_PRIORITIES = {"Low", "Medium", "High", "Urgent"}


class Client(TenantModel):
    """Customer account that projects (and client-scoped SLA policies) hang off."""

    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Client {self.id}: {self.name}>"


class Project(TenantModel):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class Task(TenantModel):
    """
    Unit of work measured against SLA policies.

    ``created_at`` is the SLA clock start for both response and
    resolution deadlines.
    """

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(
        db.String(20), nullable=False, default=TASK_STATUS_PENDING,
        comment="Pending | In Progress | Completed | Cancelled",
    )
    priority = db.Column(db.String(20), default="Medium", comment="Low | Medium | High | Urgent")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_tasks_tenant_status", "tenant_id", "status"),
    )

    assignments = db.relationship(
        "StaffAssignment", back_populates="task", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]}>"


class StaffAssignment(db.Model):
    """Link between a task and a staff profile working on it."""

    __tablename__ = "staff_assignments"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    profile_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    task = db.relationship("Task", back_populates="assignments")

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "profile_id": self.profile_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<StaffAssignment task={self.task_id} profile={self.profile_id}>"

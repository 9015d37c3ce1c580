"""
SLA domain models.

Models:
    - SlaPolicy: tenant-scoped response/resolution targets and business calendar
    - EscalationChain: ordered escalation levels per policy
    - SlaBreachAction: policy-level actions fired when a breach is detected
    - SlaBreach: one violation instance (append-only history, status marks terminality)
    - SlaBreachEvent: immutable audit row per breach state transition
"""

from datetime import datetime, timezone

from sla_engine.models import db
from sla_engine.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

POLICY_STATUSES = {"active", "paused", "archived"}
POLICY_PRIORITIES = {"low", "medium", "high", "critical"}
RESOURCE_TYPES = {"task", "project", "initiative", "message"}
WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DEFAULT_BUSINESS_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri"]

BREACH_TYPES = {"response_time", "resolution_time"}
BREACH_STATUSES = {"detected", "acknowledged", "escalated", "resolved", "auto_resolved"}
ACTIVE_BREACH_STATUSES = ("detected", "acknowledged", "escalated")
RESOLVED_BREACH_STATUSES = ("resolved", "auto_resolved")

BREACH_ACTION_TYPES = {"notify", "reassign", "escalate", "pause_billing", "create_task"}
BREACH_EVENT_TYPES = {"detected", "escalated", "acknowledged", "resolved"}

_ACTIVE_STATUS_SQL = "status IN ('detected', 'acknowledged', 'escalated')"


def _iso(value):
    return value.isoformat() if value else None


class SlaPolicy(TenantModel):
    """
    Named, tenant-scoped service-level rule.

    Scope narrows from tenant-wide (client_id and project_id NULL) to
    client-wide to a single project; the narrowest applicable policy wins.
    Once a breach references the policy only ``status`` may change.
    """

    __tablename__ = "sla_policies"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(20), nullable=False, default="medium",
                         comment="low | medium | high | critical")
    status = db.Column(db.String(20), nullable=False, default="active",
                       comment="active | paused | archived")

    response_time_hours = db.Column(db.Numeric(8, 2, asdecimal=False), nullable=False,
                                    comment="Time to first response")
    resolution_time_hours = db.Column(db.Numeric(8, 2, asdecimal=False), nullable=False,
                                      comment="Time to resolution")

    # Business calendar
    business_hours_only = db.Column(db.Boolean, default=True)
    business_hours_start = db.Column(db.Integer, default=9, comment="0-23")
    business_hours_end = db.Column(db.Integer, default=17, comment="0-23")
    business_days = db.Column(db.JSON, default=lambda: list(DEFAULT_BUSINESS_DAYS),
                              comment="Subset of Mon..Sun")
    timezone_name = db.Column("timezone", db.String(64), default="UTC",
                              comment="IANA zone the calendar is read in")

    applies_to = db.Column(db.JSON, default=lambda: ["task"],
                           comment="Resource types; empty list matches everything")
    task_priorities = db.Column(db.JSON, nullable=True,
                                comment="Optional task priority filter")

    created_by = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_sla_policies_tenant_status", "tenant_id", "status"),
        db.CheckConstraint(
            "business_hours_start >= 0 AND business_hours_start <= 23",
            name="ck_sla_policy_hours_start",
        ),
        db.CheckConstraint(
            "business_hours_end >= 0 AND business_hours_end <= 23",
            name="ck_sla_policy_hours_end",
        ),
    )

    escalations = db.relationship(
        "EscalationChain", back_populates="policy", lazy="dynamic",
        cascade="all, delete-orphan", order_by="EscalationChain.level",
    )
    actions = db.relationship(
        "SlaBreachAction", back_populates="policy", lazy="dynamic", cascade="all, delete-orphan",
    )

    def applies_to_resource(self, resource_type, priority=None):
        """True when the applies_to / task_priorities filters admit the resource."""
        if self.applies_to and resource_type not in self.applies_to:
            return False
        if self.task_priorities and priority and priority not in self.task_priorities:
            return False
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "project_id": self.project_id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "response_time_hours": self.response_time_hours,
            "resolution_time_hours": self.resolution_time_hours,
            "business_hours_only": self.business_hours_only,
            "business_hours_start": self.business_hours_start,
            "business_hours_end": self.business_hours_end,
            "business_days": self.business_days or [],
            "timezone": self.timezone_name,
            "applies_to": self.applies_to or [],
            "task_priorities": self.task_priorities,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SlaPolicy {self.id}: {self.name}>"


class EscalationChain(TenantModel):
    """
    One level of a policy's escalation chain.

    Levels are dense from 1; the engine only ever looks up ``current + 1``.
    ``escalate_after_minutes`` is measured from breach detection, not from
    the previous level.
    """

    __tablename__ = "escalation_chains"

    id = db.Column(db.Integer, primary_key=True)
    sla_id = db.Column(
        db.Integer, db.ForeignKey("sla_policies.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    level = db.Column(db.Integer, nullable=False, comment="1 = first, 2 = second, ...")
    escalate_after_minutes = db.Column(db.Integer, nullable=False,
                                       comment="Minutes after detection before this level fires")
    profile_id = db.Column(
        db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True,
    )
    notify_email = db.Column(db.String(200), nullable=True,
                             comment="Stored for operators; delivery is out of scope")
    notify_in_app = db.Column(db.Boolean, default=True)
    reassign_task = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("sla_id", "level", name="uq_escalation_chain_sla_level"),
        db.CheckConstraint("level >= 1", name="ck_escalation_chain_level"),
        db.CheckConstraint("escalate_after_minutes >= 0", name="ck_escalation_chain_minutes"),
    )

    policy = db.relationship("SlaPolicy", back_populates="escalations")
    profile = db.relationship("Profile")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sla_id": self.sla_id,
            "level": self.level,
            "escalate_after_minutes": self.escalate_after_minutes,
            "profile_id": self.profile_id,
            "notify_email": self.notify_email,
            "notify_in_app": self.notify_in_app,
            "reassign_task": self.reassign_task,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<EscalationChain sla={self.sla_id} L{self.level}>"


class SlaBreachAction(db.Model):
    """Configurable action run when a policy's breach fires (trigger_at='breach')."""

    __tablename__ = "sla_breach_actions"

    id = db.Column(db.Integer, primary_key=True)
    sla_id = db.Column(
        db.Integer, db.ForeignKey("sla_policies.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    action_type = db.Column(db.String(30), nullable=False,
                            comment="notify | reassign | escalate | pause_billing | create_task")
    trigger_at = db.Column(db.String(30), nullable=False, default="breach")
    config = db.Column(db.JSON, default=dict)
    enabled = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    policy = db.relationship("SlaPolicy", back_populates="actions")

    def to_dict(self):
        return {
            "id": self.id,
            "sla_id": self.sla_id,
            "action_type": self.action_type,
            "trigger_at": self.trigger_at,
            "config": self.config or {},
            "enabled": self.enabled,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<SlaBreachAction {self.id}: {self.action_type}@{self.trigger_at}>"


class SlaBreach(TenantModel):
    """
    One SLA violation for one work item.

    Rows are never deleted. The partial unique index guarantees at most one
    active (detected / acknowledged / escalated) breach per policy+resource,
    so two concurrent scans cannot both insert one.
    """

    __tablename__ = "sla_breaches"

    id = db.Column(db.Integer, primary_key=True)
    sla_id = db.Column(
        db.Integer, db.ForeignKey("sla_policies.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    resource_type = db.Column(db.String(30), nullable=False, default="task")
    resource_id = db.Column(db.Integer, nullable=False)
    breach_type = db.Column(db.String(30), nullable=False,
                            comment="response_time | resolution_time")
    status = db.Column(db.String(20), nullable=False, default="detected",
                       comment="detected | acknowledged | escalated | resolved | auto_resolved")

    detected_at = db.Column(db.DateTime(timezone=True), nullable=False,
                            default=lambda: datetime.now(timezone.utc))
    deadline_at = db.Column(db.DateTime(timezone=True), nullable=False,
                            comment="When the SLA was supposed to be met")
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_by = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.Integer, nullable=True)
    actual_response_at = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_resolution_at = db.Column(db.DateTime(timezone=True), nullable=True)
    breach_duration_minutes = db.Column(db.Integer, nullable=True,
                                        comment="Minutes past deadline at resolution")
    current_escalation_level = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)
    extra = db.Column("metadata", db.JSON, nullable=True)

    __table_args__ = (
        db.Index("ix_sla_breaches_resource", "resource_type", "resource_id"),
        db.Index("ix_sla_breaches_status", "status"),
        db.Index("ix_sla_breaches_detected_at", "detected_at"),
        db.Index(
            "uq_sla_breaches_active_resource",
            "sla_id", "resource_type", "resource_id",
            unique=True,
            sqlite_where=db.text(_ACTIVE_STATUS_SQL),
            postgresql_where=db.text(_ACTIVE_STATUS_SQL),
        ),
    )

    policy = db.relationship("SlaPolicy")
    events = db.relationship(
        "SlaBreachEvent", back_populates="breach", lazy="dynamic",
        cascade="all, delete-orphan", order_by="SlaBreachEvent.id",
    )

    @property
    def is_active(self):
        return self.status in ACTIVE_BREACH_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sla_id": self.sla_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "breach_type": self.breach_type,
            "status": self.status,
            "detected_at": _iso(self.detected_at),
            "deadline_at": _iso(self.deadline_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "actual_response_at": _iso(self.actual_response_at),
            "actual_resolution_at": _iso(self.actual_resolution_at),
            "breach_duration_minutes": self.breach_duration_minutes,
            "current_escalation_level": self.current_escalation_level,
            "notes": self.notes,
            "metadata": self.extra or {},
        }

    def __repr__(self):
        return f"<SlaBreach {self.id}: {self.breach_type} {self.resource_type}#{self.resource_id} [{self.status}]>"


class SlaBreachEvent(db.Model):
    """Write-once audit row. The canonical history for compliance review."""

    __tablename__ = "sla_breach_events"

    id = db.Column(db.Integer, primary_key=True)
    breach_id = db.Column(
        db.Integer, db.ForeignKey("sla_breaches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    event_type = db.Column(db.String(30), nullable=False, index=True,
                           comment="detected | escalated | acknowledged | resolved")
    event_data = db.Column(db.JSON, default=dict)
    triggered_by = db.Column(db.String(20), nullable=False, default="system",
                             comment="system | user")
    user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           index=True)

    breach = db.relationship("SlaBreach", back_populates="events")

    def to_dict(self):
        return {
            "id": self.id,
            "breach_id": self.breach_id,
            "event_type": self.event_type,
            "event_data": self.event_data or {},
            "triggered_by": self.triggered_by,
            "user_id": self.user_id,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<SlaBreachEvent {self.id}: {self.event_type} breach={self.breach_id}>"

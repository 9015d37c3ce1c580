"""sla_engine_initial

Create the SLA engine schema: tenants, profiles, work items, SLA policies,
escalation chains, breach actions, breaches, breach events, notifications
and scheduled jobs. Includes the partial unique index that allows only one
active breach per policy + resource.

Revision ID: 0001_sla_engine_initial
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001_sla_engine_initial"
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_STATUS_SQL = "status IN ('detected', 'acknowledged', 'escalated')"


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _tenant_fk():
    return sa.Column(
        "tenant_id", sa.Integer(),
        sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False, unique=True),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
            sa.Column("settings", sa.JSON(), nullable=True),
            _ts("created_at"),
        )

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=30), server_default="staff"),
            sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
            _ts("created_at"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_profile_tenant_email"),
        )
        op.create_index("ix_profiles_tenant_id", "profiles", ["tenant_id"])

    if "clients" not in existing_tables:
        op.create_table(
            "clients",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("name", sa.String(length=200), nullable=False),
            _ts("created_at"),
        )
        op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("client_id", sa.Integer(),
                      sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            _ts("created_at"),
        )
        op.create_index("ix_projects_tenant_id", "projects", ["tenant_id"])
        op.create_index("ix_projects_client_id", "projects", ["client_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("project_id", sa.Integer(),
                      sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("priority", sa.String(length=20), server_default="Medium"),
            _ts("created_at"),
        )
        op.create_index("ix_tasks_tenant_id", "tasks", ["tenant_id"])
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
        op.create_index("ix_tasks_tenant_status", "tasks", ["tenant_id", "status"])

    if "staff_assignments" not in existing_tables:
        op.create_table(
            "staff_assignments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("task_id", sa.Integer(),
                      sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
            sa.Column("profile_id", sa.Integer(),
                      sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
            _ts("created_at"),
        )
        op.create_index("ix_staff_assignments_task_id", "staff_assignments", ["task_id"])
        op.create_index("ix_staff_assignments_profile_id", "staff_assignments", ["profile_id"])

    if "sla_policies" not in existing_tables:
        op.create_table(
            "sla_policies",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("client_id", sa.Integer(),
                      sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=True),
            sa.Column("project_id", sa.Integer(),
                      sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("response_time_hours", sa.Numeric(8, 2), nullable=False),
            sa.Column("resolution_time_hours", sa.Numeric(8, 2), nullable=False),
            sa.Column("business_hours_only", sa.Boolean(), server_default=sa.true()),
            sa.Column("business_hours_start", sa.Integer(), server_default="9"),
            sa.Column("business_hours_end", sa.Integer(), server_default="17"),
            sa.Column("business_days", sa.JSON(), nullable=True),
            sa.Column("timezone", sa.String(length=64), server_default="UTC"),
            sa.Column("applies_to", sa.JSON(), nullable=True),
            sa.Column("task_priorities", sa.JSON(), nullable=True),
            sa.Column("created_by", sa.Integer(),
                      sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.CheckConstraint("business_hours_start >= 0 AND business_hours_start <= 23",
                               name="ck_sla_policy_hours_start"),
            sa.CheckConstraint("business_hours_end >= 0 AND business_hours_end <= 23",
                               name="ck_sla_policy_hours_end"),
        )
        op.create_index("ix_sla_policies_tenant_id", "sla_policies", ["tenant_id"])
        op.create_index("ix_sla_policies_client_id", "sla_policies", ["client_id"])
        op.create_index("ix_sla_policies_project_id", "sla_policies", ["project_id"])
        op.create_index("ix_sla_policies_tenant_status", "sla_policies", ["tenant_id", "status"])

    if "escalation_chains" not in existing_tables:
        op.create_table(
            "escalation_chains",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("sla_id", sa.Integer(),
                      sa.ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("level", sa.Integer(), nullable=False),
            sa.Column("escalate_after_minutes", sa.Integer(), nullable=False),
            sa.Column("profile_id", sa.Integer(),
                      sa.ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True),
            sa.Column("notify_email", sa.String(length=200), nullable=True),
            sa.Column("notify_in_app", sa.Boolean(), server_default=sa.true()),
            sa.Column("reassign_task", sa.Boolean(), server_default=sa.false()),
            _ts("created_at"),
            sa.UniqueConstraint("sla_id", "level", name="uq_escalation_chain_sla_level"),
            sa.CheckConstraint("level >= 1", name="ck_escalation_chain_level"),
            sa.CheckConstraint("escalate_after_minutes >= 0", name="ck_escalation_chain_minutes"),
        )
        op.create_index("ix_escalation_chains_tenant_id", "escalation_chains", ["tenant_id"])
        op.create_index("ix_escalation_chains_sla_id", "escalation_chains", ["sla_id"])

    if "sla_breach_actions" not in existing_tables:
        op.create_table(
            "sla_breach_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("sla_id", sa.Integer(),
                      sa.ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("action_type", sa.String(length=30), nullable=False),
            sa.Column("trigger_at", sa.String(length=30), nullable=False, server_default="breach"),
            sa.Column("config", sa.JSON(), nullable=True),
            sa.Column("enabled", sa.Boolean(), server_default=sa.true()),
            _ts("created_at"),
        )
        op.create_index("ix_sla_breach_actions_sla_id", "sla_breach_actions", ["sla_id"])

    if "sla_breaches" not in existing_tables:
        op.create_table(
            "sla_breaches",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("sla_id", sa.Integer(),
                      sa.ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("resource_type", sa.String(length=30), nullable=False, server_default="task"),
            sa.Column("resource_id", sa.Integer(), nullable=False),
            sa.Column("breach_type", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="detected"),
            _ts("detected_at", nullable=False),
            _ts("deadline_at", nullable=False),
            _ts("acknowledged_at"),
            sa.Column("acknowledged_by", sa.Integer(), nullable=True),
            _ts("resolved_at"),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            _ts("actual_response_at"),
            _ts("actual_resolution_at"),
            sa.Column("breach_duration_minutes", sa.Integer(), nullable=True),
            sa.Column("current_escalation_level", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
        op.create_index("ix_sla_breaches_tenant_id", "sla_breaches", ["tenant_id"])
        op.create_index("ix_sla_breaches_sla_id", "sla_breaches", ["sla_id"])
        op.create_index("ix_sla_breaches_resource", "sla_breaches", ["resource_type", "resource_id"])
        op.create_index("ix_sla_breaches_status", "sla_breaches", ["status"])
        op.create_index("ix_sla_breaches_detected_at", "sla_breaches", ["detected_at"])
        op.create_index(
            "uq_sla_breaches_active_resource", "sla_breaches",
            ["sla_id", "resource_type", "resource_id"],
            unique=True,
            sqlite_where=sa.text(_ACTIVE_STATUS_SQL),
            postgresql_where=sa.text(_ACTIVE_STATUS_SQL),
        )

    if "sla_breach_events" not in existing_tables:
        op.create_table(
            "sla_breach_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("breach_id", sa.Integer(),
                      sa.ForeignKey("sla_breaches.id", ondelete="CASCADE"), nullable=False),
            sa.Column("event_type", sa.String(length=30), nullable=False),
            sa.Column("event_data", sa.JSON(), nullable=True),
            sa.Column("triggered_by", sa.String(length=20), nullable=False, server_default="system"),
            sa.Column("user_id", sa.Integer(), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_sla_breach_events_breach_id", "sla_breach_events", ["breach_id"])
        op.create_index("ix_sla_breach_events_event_type", "sla_breach_events", ["event_type"])
        op.create_index("ix_sla_breach_events_created_at", "sla_breach_events", ["created_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            _tenant_fk(),
            sa.Column("profile_id", sa.Integer(),
                      sa.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), server_default="system"),
            sa.Column("severity", sa.String(length=20), server_default="info"),
            sa.Column("entity_type", sa.String(length=30), server_default=""),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
            _ts("read_at"),
            _ts("created_at"),
        )
        op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"])
        op.create_index("ix_notifications_profile_id", "notifications", ["profile_id"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=100), nullable=False, unique=True),
            sa.Column("description", sa.String(length=500), server_default=""),
            sa.Column("schedule_type", sa.String(length=30), server_default="cron"),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), server_default="active"),
            sa.Column("is_enabled", sa.Boolean(), server_default=sa.true()),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), server_default="0"),
            sa.Column("error_count", sa.Integer(), server_default="0"),
            sa.Column("last_error", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )


def downgrade():
    for table in (
        "scheduled_jobs", "notifications", "sla_breach_events", "sla_breaches",
        "sla_breach_actions", "escalation_chains", "sla_policies", "staff_assignments",
        "tasks", "projects", "clients", "profiles", "tenants",
    ):
        op.drop_table(table)

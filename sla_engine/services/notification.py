"""
SLA Engine
Notification Service.

Central service for creating and querying in-app notifications. The SLA
engine is the only producer: breach detection and escalation notify a
single profile. Delivery beyond the in-app store is not handled here.
"""

from sqlalchemy import func, select

from sla_engine.models import db
from sla_engine.models.auth import Profile
from sla_engine.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, tenant_id, profile_id, title, message="", category="system",
               severity="info", entity_type="", entity_id=None, metadata=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            tenant_id=tenant_id,
            profile_id=profile_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            extra=metadata or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    @staticmethod
    def notify_profile(profile_id, *, category, title, message, metadata=None,
                       tenant_id=None, severity="warning", entity_type="sla_breach",
                       entity_id=None):
        """
        Notify one profile.

        Returns None (and writes nothing) when the profile does not exist or
        belongs to a different tenant than ``tenant_id``.
        """
        profile = db.session.get(Profile, profile_id) if profile_id else None
        if profile is None:
            return None
        if tenant_id is not None and profile.tenant_id != tenant_id:
            return None
        return NotificationService.create(
            tenant_id=profile.tenant_id,
            profile_id=profile.id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_profile(tenant_id, profile_id, unread_only=False, limit=50, offset=0):
        """Retrieve a profile's notifications, newest first."""
        stmt = Notification.select_for_tenant(tenant_id).where(
            Notification.profile_id == profile_id,
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        total = db.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = db.session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit)
        ).scalars().all()
        return items, total

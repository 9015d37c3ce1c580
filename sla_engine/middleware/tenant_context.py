"""
Tenant Context Middleware: Enforces tenant isolation on API requests.

When a JWT-authenticated profile makes a request:
  1. g.jwt_tenant_id is already set by jwt_auth middleware
  2. This middleware verifies the tenant exists and is active
  3. Sets g.tenant / g.tenant_id / g.profile_id for route handlers
  4. Every SLA service call is scoped by g.tenant_id

Requests without a JWT pass through with g.tenant_id = None; the SLA
blueprint rejects them with 403.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, jsonify, request

from sla_engine.models import db
from sla_engine.models.auth import Tenant

logger = logging.getLogger(__name__)

# Paths that skip tenant context (unauthenticated paths only)
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.tenant_id = None
        g.profile_id = None

        if not request.path.startswith("/api/v1/"):
            return None

        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id = getattr(g, "jwt_tenant_id", None)
        if tenant_id is None:
            return None

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None:
            logger.warning("JWT tenant_id %s not found in DB", tenant_id,
                           extra={"tenant_id": tenant_id})
            return jsonify({"error": "Tenant not found"}), 403

        if not tenant.is_active:
            logger.warning("JWT tenant_id %s is deactivated", tenant_id,
                           extra={"tenant_id": tenant_id})
            return jsonify({"error": "Tenant account is deactivated"}), 403

        g.tenant = tenant
        g.tenant_id = tenant.id
        g.profile_id = getattr(g, "jwt_user_id", None)

        return None

    logger.info("Tenant context middleware installed")

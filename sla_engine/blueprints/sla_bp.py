"""
SLA Breach Detection & Escalation API

Blueprint: sla_bp
Prefix: /api/v1/sla

Endpoints:
  Policies:
    GET/POST          /definitions                      -- List/create policies
    GET/PATCH/DELETE  /definitions/<id>                 -- Single policy
    GET/POST          /definitions/<id>/escalations     -- Escalation chain
    GET/POST          /definitions/<id>/actions         -- On-breach actions

  Breaches:
    GET   /breaches                     -- History (sla_id, client_id, status, start_date, end_date, limit)
    GET   /breaches/<id>                -- Detail with audit events
    POST  /breaches/<id>/acknowledge    -- Acknowledge (body: notes)
    POST  /breaches/<id>/resolve        -- Resolve
    POST  /breaches/<id>/escalate       -- Take one escalation step now

  Monitoring:
    GET   /metrics?period=daily|weekly|monthly
    POST  /scan                                -- Manual scan of the caller's tenant
    GET   /check/<resource_type>/<id>          -- Point-in-time SLA status (task only)
    GET   /jobs                                -- Scheduled job status
    POST  /jobs/<name>/run                     -- Run a job now (admin)

Every route is tenant-scoped through g.tenant_id (set by tenant_context).
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from sla_engine import limiter
from sla_engine.blueprints import limit_arg
from sla_engine.core.exceptions import ConflictError, NotFoundError, ValidationError
from sla_engine.models.sla import BREACH_STATUSES, SlaBreach
from sla_engine.services import sla_admin_service as admin
from sla_engine.services.breach_detector import check_sla_for_task
from sla_engine.services.breach_lifecycle import (
    acknowledge_breach,
    get_breach_detail,
    get_breach_history,
    resolve_breach,
)
from sla_engine.services.escalation import escalate_breach
from sla_engine.services.helpers.scoped_queries import get_scoped_or_none
from sla_engine.services.scheduler_service import SchedulerService
from sla_engine.services.sla_metrics import get_sla_metrics
from sla_engine.services.sla_scanner import run_manual_scan
from sla_engine.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

sla_bp = Blueprint("sla_bp", __name__, url_prefix="/api/v1/sla")


class _Forbidden(Exception):
    pass


class _BadRequest(Exception):
    pass


def _tenant_id() -> int:
    tid = getattr(g, "tenant_id", None)
    if not tid:
        raise _Forbidden("Tenant access required")
    return tid


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise _BadRequest("Request body must be a JSON object")
    return data


def _int_arg(name):
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise _BadRequest(f"{name} must be an integer") from exc


def _date_arg(name):
    try:
        return parse_datetime(request.args.get(name))
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc


# ── Error handlers ────────────────────────────────────────────────────────────


@sla_bp.errorhandler(_BadRequest)
def _handle_bad_request(error):
    return jsonify({"error": str(error)}), 400


@sla_bp.errorhandler(_Forbidden)
def _handle_forbidden(error):
    return jsonify({"error": str(error)}), 403


@sla_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": f"{error.resource} not found"}), 404


@sla_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 422


@sla_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"error": str(error)}), 409


@sla_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in sla_bp endpoint=%s", request.endpoint,
                     extra={"tenant_id": getattr(g, "tenant_id", None)})
    return jsonify({"error": "Internal server error"}), 500


# ═════════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════════


@sla_bp.route("/definitions", methods=["GET"])
def list_definitions():
    tid = _tenant_id()
    items = admin.list_policies(tid, status=request.args.get("status") or None)
    return jsonify({"items": items, "total": len(items)}), 200


@sla_bp.route("/definitions", methods=["POST"])
def create_definition():
    tid = _tenant_id()
    policy = admin.create_policy(tid, _json_body(), created_by=g.profile_id)
    return jsonify(policy), 201


@sla_bp.route("/definitions/<int:policy_id>", methods=["GET"])
def get_definition(policy_id):
    return jsonify(admin.get_policy(_tenant_id(), policy_id)), 200


@sla_bp.route("/definitions/<int:policy_id>", methods=["PATCH"])
def update_definition(policy_id):
    tid = _tenant_id()
    return jsonify(admin.update_policy(tid, policy_id, _json_body())), 200


@sla_bp.route("/definitions/<int:policy_id>", methods=["DELETE"])
def delete_definition(policy_id):
    admin.delete_policy(_tenant_id(), policy_id)
    return jsonify({"success": True}), 200


@sla_bp.route("/definitions/<int:policy_id>/escalations", methods=["GET"])
def list_escalations(policy_id):
    items = admin.list_escalations(_tenant_id(), policy_id)
    return jsonify({"items": items, "total": len(items)}), 200


@sla_bp.route("/definitions/<int:policy_id>/escalations", methods=["POST"])
def create_escalation(policy_id):
    tid = _tenant_id()
    return jsonify(admin.create_escalation(tid, policy_id, _json_body())), 201


@sla_bp.route("/definitions/<int:policy_id>/actions", methods=["GET"])
def list_actions(policy_id):
    items = admin.list_breach_actions(_tenant_id(), policy_id)
    return jsonify({"items": items, "total": len(items)}), 200


@sla_bp.route("/definitions/<int:policy_id>/actions", methods=["POST"])
def create_action(policy_id):
    tid = _tenant_id()
    return jsonify(admin.create_breach_action(tid, policy_id, _json_body())), 201


# ═════════════════════════════════════════════════════════════════════════
# Breaches
# ═════════════════════════════════════════════════════════════════════════


@sla_bp.route("/breaches", methods=["GET"])
def list_breaches():
    """Breach history, newest first, with the owning policy's name."""
    tid = _tenant_id()
    status = request.args.get("status") or None
    if status and status not in BREACH_STATUSES:
        raise _BadRequest(f"status must be one of {sorted(BREACH_STATUSES)}")

    default_limit = current_app.config.get("SLA_BREACH_HISTORY_LIMIT", 100)
    breaches = get_breach_history(
        tid,
        sla_id=_int_arg("sla_id"),
        client_id=_int_arg("client_id"),
        status=status,
        start_date=_date_arg("start_date"),
        end_date=_date_arg("end_date"),
        limit=limit_arg(default_limit),
    )
    items = []
    for breach in breaches:
        data = breach.to_dict()
        data["sla_name"] = breach.policy.name if breach.policy else None
        items.append(data)
    return jsonify({"items": items, "total": len(items)}), 200


@sla_bp.route("/breaches/<int:breach_id>", methods=["GET"])
def get_breach(breach_id):
    detail = get_breach_detail(_tenant_id(), breach_id)
    if detail is None:
        return jsonify({"error": "SlaBreach not found"}), 404
    return jsonify(detail), 200


@sla_bp.route("/breaches/<int:breach_id>/acknowledge", methods=["POST"])
def acknowledge(breach_id):
    tid = _tenant_id()
    data = _json_body()
    ok = acknowledge_breach(breach_id, g.profile_id, tid, notes=data.get("notes"))
    if not ok:
        return jsonify({"success": False, "error": "Breach not found or already closed"}), 404
    return jsonify({"success": True, "breach": get_breach_detail(tid, breach_id)}), 200


@sla_bp.route("/breaches/<int:breach_id>/resolve", methods=["POST"])
def resolve(breach_id):
    tid = _tenant_id()
    ok = resolve_breach(breach_id, g.profile_id, tid)
    if not ok:
        return jsonify({"success": False, "error": "Breach not found or already closed"}), 404
    return jsonify({"success": True, "breach": get_breach_detail(tid, breach_id)}), 200


@sla_bp.route("/breaches/<int:breach_id>/escalate", methods=["POST"])
def escalate(breach_id):
    tid = _tenant_id()
    if get_scoped_or_none(SlaBreach, breach_id, tenant_id=tid) is None:
        return jsonify({"error": "SlaBreach not found"}), 404
    return jsonify(escalate_breach(breach_id, tenant_id=tid)), 200


# ═════════════════════════════════════════════════════════════════════════
# Monitoring
# ═════════════════════════════════════════════════════════════════════════


@sla_bp.route("/metrics", methods=["GET"])
def metrics():
    tid = _tenant_id()
    result = get_sla_metrics(
        tid,
        period_type=request.args.get("period", "monthly"),
        sla_id=_int_arg("sla_id"),
        client_id=_int_arg("client_id"),
    )
    return jsonify(result), 200


@sla_bp.route("/scan", methods=["POST"])
@limiter.limit(lambda: current_app.config.get("SLA_SCAN_RATE_LIMIT", "10/minute"))
def scan():
    tid = _tenant_id()
    return jsonify(run_manual_scan(tid)), 200


@sla_bp.route("/check/<resource_type>/<int:resource_id>", methods=["GET"])
def check(resource_type, resource_id):
    tid = _tenant_id()
    if resource_type != "task":
        raise _BadRequest("Only task SLA checks are supported")
    result = check_sla_for_task(
        resource_id, tid,
        client_id=_int_arg("client_id"),
        project_id=_int_arg("project_id"),
    )
    if result is None:
        return jsonify({"error": "Task not found or no SLA applies"}), 404
    result["deadline_at"] = result["deadline_at"].isoformat()
    return jsonify(result), 200


@sla_bp.route("/jobs", methods=["GET"])
def list_jobs():
    _tenant_id()
    return jsonify({"items": SchedulerService.list_jobs(),
                    "running": SchedulerService.is_running()}), 200


@sla_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    _tenant_id()
    if "admin" not in (g.jwt_roles or []):
        raise _Forbidden("Admin role required")
    result = SchedulerService.run_job(job_name)
    if result["status"] == "error":
        return jsonify(result), 404
    return jsonify(result), 200

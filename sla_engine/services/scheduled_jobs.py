"""
SLA Engine
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - sla_breach_scan: detect new breaches per tenant, first escalation step
    - sla_escalation_sweep: time-driven escalation and auto-resolution
"""

from __future__ import annotations

import logging
from typing import Any

from sla_engine.services.scheduler_service import register_job
from sla_engine.services.sla_scanner import scan_all_tenants, sweep_escalations

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Breach Scan
# ═══════════════════════════════════════════════════════════════════════════

@register_job("sla_breach_scan")
def sla_breach_scan(app) -> dict[str, Any]:
    """Detect SLA breaches for every tenant and escalate each new breach once."""
    return scan_all_tenants()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Escalation Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("sla_escalation_sweep")
def sla_escalation_sweep(app) -> dict[str, Any]:
    """Advance due escalation levels and auto-resolve breaches of finished tasks."""
    result = sweep_escalations()
    if result["failed_tenants"]:
        logger.warning("Escalation sweep failed for tenants %s", result["failed_tenants"])
    return result

"""Incident management — incident lifecycle, auto-remediation and runbooks."""

from tradeops.incidents.manager import IncidentManager
from tradeops.incidents.remediation import REMEDIATION_PLANS, RemediationPlan
from tradeops.incidents.runbooks import RUNBOOKS, get_runbook, list_runbooks

__all__ = [
    "REMEDIATION_PLANS",
    "RUNBOOKS",
    "IncidentManager",
    "RemediationPlan",
    "get_runbook",
    "list_runbooks",
]
